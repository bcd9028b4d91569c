"""Guest-facing routes, authenticated by table-session headers."""

from fastapi import APIRouter, status

from restopos.core.table_session import CurrentTableSession, GuestCapabilities
from restopos.db.session import DbSession
from restopos.schemas.action import ActionCreate
from restopos.schemas.order import CustomerOrderCreate
from restopos.services.action_service import ActionService, serialize_action
from restopos.services.menu_service import MenuItemService
from restopos.services.order_service import OrderService, serialize_order
from restopos.services.session_service import SessionService, serialize_session

router = APIRouter()


@router.get("/menu")
def get_menu(session: CurrentTableSession, db: DbSession):
    """Available items grouped by active category."""
    return MenuItemService(db).customer_menu()


@router.get("/session")
def get_session(session: CurrentTableSession):
    return serialize_session(session)


@router.get("/session/bill")
def get_bill(session: CurrentTableSession, db: DbSession):
    return SessionService(db).get_bill(session.id)


@router.post("/orders", status_code=status.HTTP_201_CREATED)
def create_order(body: CustomerOrderCreate, caps: GuestCapabilities, db: DbSession):
    order = OrderService(db).create_order(
        caps,
        [i.to_request() for i in body.items],
        session_id=caps.table_session_id,
        notes=body.notes,
    )
    return serialize_order(order)


@router.get("/orders")
def list_orders(caps: GuestCapabilities, db: DbSession):
    orders, _ = OrderService(db).list(caps, limit=200)
    return [serialize_order(o) for o in orders]


@router.post("/actions", status_code=status.HTTP_201_CREATED)
def create_action(body: ActionCreate, caps: GuestCapabilities, db: DbSession):
    action = ActionService(db).create(caps, caps.table_session_id, body.action_type, description=body.description)
    return serialize_action(action)


@router.get("/actions")
def list_actions(caps: GuestCapabilities, db: DbSession):
    return [serialize_action(a) for a in ActionService(db).list(caps)]
