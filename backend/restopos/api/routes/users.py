"""Staff account management routes."""

from typing import Optional

from fastapi import APIRouter, status

from restopos.core.rbac import StaffCapabilities, UserRole
from restopos.core.responses import paginated_response
from restopos.core.validators import LimitQuery, PositiveIntId, SkipQuery
from restopos.db.session import DbSession
from restopos.schemas.user import UserUpdate
from restopos.services.user_service import UserService, serialize_user

router = APIRouter()


@router.get("/")
def list_users(
    caps: StaffCapabilities,
    db: DbSession,
    search: Optional[str] = None,
    role: Optional[UserRole] = None,
    is_active: Optional[bool] = None,
    skip: SkipQuery = 0,
    limit: LimitQuery = 50,
):
    items, total = UserService(db).list(caps, search=search, role=role, is_active=is_active, skip=skip, limit=limit)
    return paginated_response([serialize_user(u) for u in items], total, skip, limit)


@router.get("/{user_id}")
def get_user(user_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    return serialize_user(UserService(db).get(caps, user_id))


@router.patch("/{user_id}")
def update_user(user_id: PositiveIntId, body: UserUpdate, caps: StaffCapabilities, db: DbSession):
    user = UserService(db).update(caps, user_id, **body.model_dump(exclude_unset=True))
    return serialize_user(user)


@router.post("/{user_id}/deactivate")
def deactivate_user(user_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    return serialize_user(UserService(db).deactivate(caps, user_id))


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(user_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    UserService(db).delete(caps, user_id)
