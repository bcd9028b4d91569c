"""Role listing."""

from fastapi import APIRouter

from restopos.core.rbac import StaffCapabilities, UserRole, permissions_for

router = APIRouter()


@router.get("/")
def list_roles(caps: StaffCapabilities):
    return [{"role": role.value, "permissions": permissions_for(role)} for role in UserRole]
