"""Table-session gate for guest requests.

Guests authenticate with the ``X-Table-Session`` / ``X-Table-Secret`` pair
handed out when their session was opened. The resolved session is stored on
``request.state.table_session`` for the rest of the request.
"""

from typing import Annotated, Optional

from fastapi import Depends, Header, Request

from restopos.core.exceptions import UnauthorizedError
from restopos.core.rbac import Capabilities
from restopos.db.session import DbSession
from restopos.models.table import TableSession
from restopos.services.session_service import INVALID_SESSION_MESSAGE, SessionService


async def get_table_session(
    request: Request,
    db: DbSession,
    x_table_session: Annotated[Optional[str], Header()] = None,
    x_table_secret: Annotated[Optional[str], Header()] = None,
) -> TableSession:
    if not x_table_session or not x_table_secret:
        raise UnauthorizedError("Table session credentials required")
    try:
        session_id = int(x_table_session)
    except ValueError:
        raise UnauthorizedError(INVALID_SESSION_MESSAGE)

    session = SessionService(db).authenticate(session_id, x_table_secret)
    request.state.table_session = session
    return session


CurrentTableSession = Annotated[TableSession, Depends(get_table_session)]


async def get_guest_capabilities(session: CurrentTableSession) -> Capabilities:
    return Capabilities.for_table_session(session.id)


GuestCapabilities = Annotated[Capabilities, Depends(get_guest_capabilities)]
