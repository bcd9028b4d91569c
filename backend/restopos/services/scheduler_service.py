"""Background task scheduler for periodic reservation and notification upkeep."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from restopos.services.reservation_service import (
    run_mark_no_shows,
    run_release_expired_reservations,
    run_sync_table_statuses,
)

logger = logging.getLogger(__name__)

TICK_SECONDS = 30


class TaskScheduler:
    """Lightweight asyncio-based task scheduler.

    Runs registered tasks at fixed intervals. State is ephemeral and does not
    survive restarts. Synchronous jobs run in a worker thread so database work
    never blocks the event loop.
    """

    def __init__(self, tick_seconds: int = TICK_SECONDS):
        self._tasks: Dict[str, Dict[str, Any]] = {}
        self._running = False
        self._tick_seconds = tick_seconds

    async def start(self):
        """Start the scheduler loop."""
        self._running = True
        logger.info("Task scheduler started")
        while self._running:
            await self.run_pending()
            await asyncio.sleep(self._tick_seconds)

    async def run_pending(self, now: Optional[datetime] = None) -> int:
        """Run every task that is due. Returns how many ran."""
        now = now or datetime.now(timezone.utc)
        ran = 0
        for name, task in list(self._tasks.items()):
            if now < task["next_run"]:
                continue
            try:
                if asyncio.iscoroutinefunction(task["func"]):
                    result = await task["func"]()
                else:
                    result = await asyncio.to_thread(task["func"])
                task["last_run"] = now
                task["run_count"] = task.get("run_count", 0) + 1
                task["last_error"] = None
                logger.debug(f"Scheduled task '{name}' completed: {result}")
            except Exception as e:
                task["last_error"] = str(e)
                logger.error(f"Scheduled task '{name}' failed: {e}")
            task["next_run"] = now + task["interval"]
            ran += 1
        return ran

    def stop(self):
        self._running = False

    def add_task(self, name: str, func: Callable, interval_seconds: int, first_run_delay: int = 10):
        self._tasks[name] = {
            "func": func,
            "interval": timedelta(seconds=interval_seconds),
            "next_run": datetime.now(timezone.utc) + timedelta(seconds=first_run_delay),
            "last_run": None,
            "run_count": 0,
            "last_error": None,
        }
        logger.info(f"Scheduled task '{name}' every {interval_seconds}s")

    def remove_task(self, name: str):
        self._tasks.pop(name, None)

    def get_status(self) -> Dict[str, Any]:
        return {
            name: {
                "last_run": t["last_run"].isoformat() if t["last_run"] else None,
                "next_run": t["next_run"].isoformat(),
                "interval_seconds": int(t["interval"].total_seconds()),
                "run_count": t.get("run_count", 0),
                "last_error": t.get("last_error"),
            }
            for name, t in self._tasks.items()
        }


def run_mark_old_notifications_read(hours: int = 24) -> Dict[str, Any]:
    """Standalone entry point: mark notifications older than ``hours`` as read."""
    from restopos.db.session import SessionLocal
    from restopos.services.notification_service import NotificationService

    db = SessionLocal()
    try:
        return {"marked_read": NotificationService(db).mark_old_as_read(hours=hours)}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def register_default_tasks(task_scheduler: "TaskScheduler") -> None:
    task_scheduler.add_task("release_expired_reservations", run_release_expired_reservations, 10 * 60)
    task_scheduler.add_task("mark_no_shows", run_mark_no_shows, 60 * 60)
    task_scheduler.add_task("sync_table_statuses", run_sync_table_statuses, 5 * 60)
    task_scheduler.add_task("mark_old_notifications_read", run_mark_old_notifications_read, 60 * 60)


scheduler = TaskScheduler()
