"""Table session routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Request, status

from restopos.core.rate_limit import limiter
from restopos.core.rbac import Permission, StaffCapabilities, require_permission
from restopos.core.responses import paginated_response
from restopos.core.validators import LimitQuery, PositiveIntId, SkipQuery
from restopos.db.session import DbSession
from restopos.models.table import SessionStatus
from restopos.schemas.table import SessionClose, SessionCreate, SessionInit, SessionUpdate
from restopos.services.session_service import SessionService, serialize_session

router = APIRouter()


@router.post("/init", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def init_session(request: Request, body: SessionInit, db: DbSession):
    """Open a session from a scanned table QR code. Public: the token is the credential.

    The returned ``session_secret`` is shown only once.
    """
    return SessionService(db).init(body.token, customer_count=body.customer_count, notes=body.notes)


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_session(body: SessionCreate, caps: StaffCapabilities, db: DbSession):
    return SessionService(db).create(caps, body.table_id, customer_count=body.customer_count, notes=body.notes)


@router.get("/", dependencies=[Depends(require_permission(Permission.SESSION_VIEW))])
def list_sessions(
    db: DbSession,
    status: Optional[SessionStatus] = None,
    table_id: Optional[int] = None,
    skip: SkipQuery = 0,
    limit: LimitQuery = 50,
):
    items, total = SessionService(db).list(status=status, table_id=table_id, skip=skip, limit=limit)
    return paginated_response([serialize_session(s) for s in items], total, skip, limit)


@router.get("/{session_id}", dependencies=[Depends(require_permission(Permission.SESSION_VIEW))])
def get_session(session_id: PositiveIntId, db: DbSession):
    return serialize_session(SessionService(db).get(session_id))


@router.get("/{session_id}/bill", dependencies=[Depends(require_permission(Permission.SESSION_VIEW))])
def get_session_bill(session_id: PositiveIntId, db: DbSession):
    return SessionService(db).get_bill(session_id)


@router.patch("/{session_id}")
def update_session(session_id: PositiveIntId, body: SessionUpdate, caps: StaffCapabilities, db: DbSession):
    session = SessionService(db).update(caps, session_id, **body.model_dump(exclude_unset=True))
    return serialize_session(session)


@router.post("/{session_id}/close")
def close_session(
    session_id: PositiveIntId,
    caps: StaffCapabilities,
    db: DbSession,
    body: Optional[SessionClose] = None,
):
    session = SessionService(db).close(caps, session_id, notes=body.notes if body else None)
    return serialize_session(session)
