"""FastAPI application entry point."""

import asyncio
import json
import logging
import os
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from starlette.middleware.base import BaseHTTPMiddleware

from restopos.api.routes import api_router
from restopos.api.routes import webhooks
from restopos.core.config import settings
from restopos.core.exceptions import DomainError, NotFoundError, domain_error_handler
from restopos.core.rate_limit import limiter
from restopos.core.security import decode_access_token
from restopos.db.base import Base
from restopos.db.session import DbSession, SessionLocal, engine
from restopos.services.notification_service import NotificationService
from restopos.services.scheduler_service import register_default_tasks, scheduler
from restopos.services.websocket_service import user_channel, ws_manager

import restopos.models  # noqa: F401  (register mappers with Base.metadata)

# Configure logging - use JSON format in production, human-readable in dev
root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, settings.log_level))
root_logger.handlers.clear()

if settings.debug:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
else:

    class JSONFormatter(logging.Formatter):
        def format(self, record):
            return json.dumps({
                "ts": self.formatTime(record, self.datefmt),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "module": record.module,
                "line": record.lineno,
            })

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

root_logger.addHandler(handler)
logger = logging.getLogger(__name__)
request_logger = logging.getLogger("requests")


def _read_token(request_or_socket, explicit: Optional[str] = None) -> Optional[dict]:
    """Decode a staff access token from an explicit value, the Bearer header or the cookie."""
    payload = None
    if explicit:
        payload = decode_access_token(explicit)
    if payload is None:
        auth_header = request_or_socket.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1]
            if token:
                payload = decode_access_token(token)
    # Fall back to cookie if no Bearer or Bearer was invalid
    if payload is None and "access_token" in request_or_socket.cookies:
        payload = decode_access_token(request_or_socket.cookies["access_token"])
    return payload


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Attach the decoded staff token to ``request.state.identity``.

    Never rejects: routes decide through ``CurrentUser`` / ``StaffCapabilities``
    whether an identity is required.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.identity = _read_token(request)
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all HTTP requests and responses."""

    async def dispatch(self, request: Request, call_next):
        # Skip logging for health checks
        if request.url.path in ["/health", "/health/ready", "/", "/docs", "/openapi.json"]:
            return await call_next(request)

        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"
        request_logger.info(f"Request: {request.method} {request.url.path} - Client: {client_ip}")

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            request_logger.error(
                f"Error: {request.method} {request.url.path} - "
                f"Exception: {str(e)} - Time: {process_time:.3f}s - Client: {client_ip}"
            )
            raise

        process_time = time.time() - start_time
        log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
        request_logger.log(
            log_level,
            f"Response: {request.method} {request.url.path} - "
            f"Status: {response.status_code} - Time: {process_time:.3f}s - Client: {client_ip}",
        )
        return response


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.warning(f"Integrity error on {request.method} {request.url.path}: {exc.orig}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": "Request conflicts with existing data", "code": "conflict"},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting RestoPOS")

    # SQLite dev databases are created in place; PostgreSQL uses Alembic migrations
    if settings.database_url.startswith("sqlite"):
        db_path = settings.database_url.replace("sqlite:///", "", 1)
        if db_path and db_path != settings.database_url and not db_path.startswith(":memory:"):
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created (SQLite mode)")

    ws_manager.bind_loop(asyncio.get_running_loop())

    scheduler_task = None
    if settings.scheduler_enabled:
        register_default_tasks(scheduler)
        scheduler_task = asyncio.create_task(scheduler.start())

    yield

    if scheduler_task is not None:
        scheduler.stop()
        scheduler_task.cancel()
        try:
            await scheduler_task
        except asyncio.CancelledError:
            pass
    ws_manager.bind_loop(None)
    logger.info("Shutting down RestoPOS")


app = FastAPI(
    title="RestoPOS",
    description="Restaurant point-of-sale API: tables, QR ordering, kitchen, payments, reservations",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Rate limiting setup
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(DomainError, domain_error_handler)
app.add_exception_handler(IntegrityError, integrity_error_handler)

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(AuthenticationMiddleware)
app.add_middleware(RequestLoggingMiddleware)
# CORS middleware - MUST be added last so it runs first (Starlette LIFO order)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
        "X-Requested-With",
        "X-Table-Session",
        "X-Table-Secret",
    ],
    max_age=600,  # Cache preflight for 10 minutes
)

app.include_router(api_router, prefix=settings.api_v1_prefix)
app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])


@app.get("/health")
def health_check():
    """Basic liveness check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


@app.get("/health/ready")
def readiness_check():
    """Readiness probe with database and WebSocket checks."""
    checks = {"database": "unknown", "websocket_manager": "unknown", "scheduler": "disabled"}

    db = None
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = "unhealthy"
    finally:
        if db:
            db.close()

    checks["websocket_manager"] = f"healthy ({ws_manager.get_connection_count()} connections)"
    if settings.scheduler_enabled:
        checks["scheduler"] = f"healthy ({len(scheduler.get_status())} tasks)"

    all_healthy = checks["database"] == "healthy"
    return {
        "status": "ready" if all_healthy else "degraded",
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }


# ===== Notifications WebSocket =====

async def _handle_ws_message(websocket: WebSocket, service: NotificationService, user_id: int, raw: str) -> None:
    if raw == "ping":
        ws_manager.update_ping(websocket)
        await websocket.send_text("pong")
        return
    if len(raw) > ws_manager.MAX_MESSAGE_SIZE:
        await websocket.send_json({"event": "error", "data": {"message": "Message too large"}})
        return
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        await websocket.send_json({"event": "error", "data": {"message": "Invalid JSON"}})
        return

    if not isinstance(message, dict):
        await websocket.send_json({"event": "error", "data": {"message": "Expected a JSON object"}})
        return
    event = message.get("event")
    data = message.get("data") or {}

    if event == "ping":
        ws_manager.update_ping(websocket)
        await websocket.send_json({"event": "pong", "data": {}})
    elif event == "getUnreadCount":
        await websocket.send_json({"event": "unreadCount", "data": {"count": service.unread_count(user_id)}})
    elif event == "markAsRead":
        try:
            service.mark_as_read(user_id, int(data.get("notificationId")))
        except (TypeError, ValueError, NotFoundError):
            await websocket.send_json({"event": "error", "data": {"message": "Notification not found"}})
            return
        await websocket.send_json({"event": "unreadCount", "data": {"count": service.unread_count(user_id)}})
    elif event == "markAllAsRead":
        service.mark_all_as_read(user_id)
        await websocket.send_json({"event": "unreadCount", "data": {"count": 0}})
    else:
        await websocket.send_json({"event": "error", "data": {"message": f"Unknown event: {event}"}})


@app.websocket("/ws/notifications")
async def websocket_notifications(websocket: WebSocket, db: DbSession, token: Optional[str] = Query(None)):
    """Live notifications for one staff user. Requires a JWT in ``token`` or the cookie."""
    payload = _read_token(websocket, token)
    user_id = int(payload.get("sub", 0)) if payload else 0
    if not user_id:
        logger.warning("WebSocket rejected for 'notifications': no valid token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    channel = user_channel(user_id)
    if not await ws_manager.connect(websocket, channel, user_id=user_id):
        return

    service = NotificationService(db)
    try:
        await websocket.send_json({"event": "unreadCount", "data": {"count": service.unread_count(user_id)}})
        while True:
            raw = await websocket.receive_text()
            await _handle_ws_message(websocket, service, user_id, raw)
    except WebSocketDisconnect:
        ws_manager.disconnect(websocket, channel)
    except Exception as e:
        logger.error(f"WebSocket error in {channel}: {e}", exc_info=True)
        ws_manager.disconnect(websocket, channel)
