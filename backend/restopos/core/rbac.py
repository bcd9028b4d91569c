"""Role-Based Access Control (RBAC) utilities.

Authorization is expressed as an explicit ``Capabilities`` value: routes build
one from the authenticated identity (or from a validated table session) and
pass it into every service call that mutates or exposes guarded state.
Services decide with ``caps.require(...)``; nothing reads the caller's role
from ambient request state.

Roles:
- admin: everything, including user management
- manager: everything except user management
- cashier: sessions, orders and payments at the counter
- waiter: floor service, reservations and customer requests
- kitchen: kitchen display only
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Dict, FrozenSet, Optional

from fastapi import Depends, Request

from restopos.core.exceptions import ForbiddenError, UnauthorizedError
from restopos.db.session import DbSession


class UserRole(str, Enum):
    """User roles for RBAC."""

    ADMIN = "admin"
    MANAGER = "manager"
    CASHIER = "cashier"
    WAITER = "waiter"
    KITCHEN = "kitchen"


class Permission(str, Enum):
    """Available permissions in the system."""

    # Menu
    MENU_VIEW = "menu:view"
    MENU_MANAGE = "menu:manage"

    # Tables and sessions
    TABLE_VIEW = "table:view"
    TABLE_MANAGE = "table:manage"
    SESSION_VIEW = "session:view"
    SESSION_MANAGE = "session:manage"

    # Orders
    ORDER_VIEW = "order:view"
    ORDER_CREATE = "order:create"
    ORDER_UPDATE = "order:update"
    ORDER_CANCEL = "order:cancel"

    # Kitchen
    KITCHEN_VIEW = "kitchen:view"
    KITCHEN_UPDATE = "kitchen:update"

    # Payments
    PAYMENT_VIEW = "payment:view"
    PAYMENT_PROCESS = "payment:process"
    PAYMENT_REFUND = "payment:refund"

    # Reports
    ANALYTICS_VIEW = "analytics:view"

    # Reservations
    RESERVATION_VIEW = "reservation:view"
    RESERVATION_MANAGE = "reservation:manage"

    # Customers
    CUSTOMER_VIEW = "customer:view"
    CUSTOMER_MANAGE = "customer:manage"

    # Customer requests
    ACTION_VIEW = "action:view"
    ACTION_CREATE = "action:create"
    ACTION_HANDLE = "action:handle"

    # Staff
    USER_VIEW = "user:view"
    USER_MANAGE = "user:manage"


ALL_PERMISSIONS: FrozenSet[Permission] = frozenset(Permission)

# Role to permissions mapping
ROLE_PERMISSIONS: Dict[UserRole, FrozenSet[Permission]] = {
    UserRole.ADMIN: ALL_PERMISSIONS,
    UserRole.MANAGER: ALL_PERMISSIONS - {Permission.USER_MANAGE},
    UserRole.CASHIER: frozenset({
        Permission.MENU_VIEW,
        Permission.TABLE_VIEW,
        Permission.SESSION_VIEW, Permission.SESSION_MANAGE,
        Permission.ORDER_VIEW, Permission.ORDER_CREATE, Permission.ORDER_UPDATE,
        Permission.PAYMENT_VIEW, Permission.PAYMENT_PROCESS,
        Permission.RESERVATION_VIEW,
        Permission.CUSTOMER_VIEW, Permission.CUSTOMER_MANAGE,
        Permission.ACTION_VIEW, Permission.ACTION_HANDLE,
    }),
    UserRole.WAITER: frozenset({
        Permission.MENU_VIEW,
        Permission.TABLE_VIEW,
        Permission.SESSION_VIEW, Permission.SESSION_MANAGE,
        Permission.ORDER_VIEW, Permission.ORDER_CREATE, Permission.ORDER_UPDATE,
        Permission.ORDER_CANCEL,
        Permission.KITCHEN_VIEW,
        Permission.PAYMENT_VIEW,
        Permission.RESERVATION_VIEW, Permission.RESERVATION_MANAGE,
        Permission.CUSTOMER_VIEW,
        Permission.ACTION_VIEW, Permission.ACTION_HANDLE,
    }),
    UserRole.KITCHEN: frozenset({
        Permission.MENU_VIEW,
        Permission.ORDER_VIEW,
        Permission.KITCHEN_VIEW, Permission.KITCHEN_UPDATE,
    }),
}

# What a guest holding a valid table-session secret may do
TABLE_GUEST_PERMISSIONS: FrozenSet[Permission] = frozenset({
    Permission.MENU_VIEW,
    Permission.ORDER_VIEW,
    Permission.ORDER_CREATE,
    Permission.ACTION_CREATE,
})


class TokenData:
    """Decoded token data.

    Attributes:
        user_id: The user's database ID.
        username: The user's login name.
        role: The user's role.
        id: Alias for user_id.
    """

    def __init__(self, user_id: int, username: str, role: UserRole):
        self.user_id = user_id
        self.id = user_id
        self.username = username
        self.role = role


@dataclass(frozen=True)
class Capabilities:
    """What the caller of a service operation is allowed to do."""

    permissions: FrozenSet[Permission] = field(default_factory=frozenset)
    user_id: Optional[int] = None
    role: Optional[UserRole] = None
    table_session_id: Optional[int] = None

    @classmethod
    def for_role(cls, role: UserRole, user_id: Optional[int] = None) -> "Capabilities":
        return cls(permissions=ROLE_PERMISSIONS.get(role, frozenset()), user_id=user_id, role=role)

    @classmethod
    def for_user(cls, user: TokenData) -> "Capabilities":
        return cls.for_role(user.role, user_id=user.user_id)

    @classmethod
    def for_table_session(cls, session_id: int) -> "Capabilities":
        return cls(permissions=TABLE_GUEST_PERMISSIONS, table_session_id=session_id)

    @classmethod
    def system(cls) -> "Capabilities":
        """Capabilities for internal callers (scheduler, bank webhook)."""
        return cls(permissions=ALL_PERMISSIONS)

    @property
    def is_staff(self) -> bool:
        return self.user_id is not None

    def can(self, permission: Permission) -> bool:
        return permission in self.permissions

    def require(self, *permissions: Permission) -> None:
        """Raise ForbiddenError unless every permission is held."""
        missing = [p.value for p in permissions if p not in self.permissions]
        if missing:
            raise ForbiddenError(
                f"Missing permission: {', '.join(missing)}",
                details={"missing": missing},
            )


def permissions_for(role: UserRole) -> list[str]:
    return sorted(p.value for p in ROLE_PERMISSIONS.get(role, frozenset()))


async def get_current_user(request: Request, db: DbSession) -> TokenData:
    """Resolve the identity attached by ``AuthenticationMiddleware``.

    Raises UnauthorizedError when no valid token was presented or the
    account has since been disabled.
    """
    payload = getattr(request.state, "identity", None)
    if payload is None:
        raise UnauthorizedError("Not authenticated", bearer=True)

    user_id = payload.get("sub")
    username = payload.get("username")
    role = payload.get("role")

    if user_id is None or username is None or role is None:
        raise UnauthorizedError("Invalid token payload", bearer=True)

    try:
        user_role = UserRole(role)
    except ValueError:
        raise UnauthorizedError("Invalid role in token", bearer=True)

    from restopos.models.user import User
    user = db.get(User, int(user_id))
    if user is None or not user.is_active:
        raise UnauthorizedError("User account is disabled", bearer=True)

    return TokenData(user_id=int(user_id), username=username, role=user_role)


CurrentUser = Annotated[TokenData, Depends(get_current_user)]


async def get_capabilities(current_user: CurrentUser) -> Capabilities:
    return Capabilities.for_user(current_user)


StaffCapabilities = Annotated[Capabilities, Depends(get_capabilities)]


def require_permission(*permissions: Permission):
    """Dependency that rejects callers missing any of the given permissions."""

    async def permission_checker(caps: StaffCapabilities) -> Capabilities:
        caps.require(*permissions)
        return caps

    return permission_checker
