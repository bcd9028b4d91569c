"""Staff accounts and authentication."""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from restopos.core.exceptions import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError, ValidationError
from restopos.core.rbac import Capabilities, Permission, UserRole, permissions_for
from restopos.core.security import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    get_password_hash,
    verify_password,
)
from restopos.models.order import Order
from restopos.models.payment import Payment
from restopos.models.user import User

logger = logging.getLogger("auth")

MIN_PASSWORD_LENGTH = 8

# Compared against when the username is unknown, so both paths cost one bcrypt check
_DUMMY_HASH = get_password_hash("not-a-real-password")


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "name": user.name,
        "role": user.role.value,
        "is_active": user.is_active,
        "permissions": permissions_for(user.role),
    }


def issue_tokens(user: User) -> Dict[str, Any]:
    claims = {"sub": str(user.id), "username": user.username, "role": user.role.value}
    return {
        "access_token": create_access_token(claims),
        "refresh_token": create_refresh_token({"sub": str(user.id)}),
        "token_type": "bearer",
        "user": serialize_user(user),
    }


class AuthService:
    """Login, token refresh and password changes."""

    def __init__(self, db: Session):
        self.db = db

    def login(self, username: str, password: str, client_ip: str = "unknown") -> Dict[str, Any]:
        user = self.db.query(User).filter(User.username == username).first()
        if user is None:
            verify_password(password, _DUMMY_HASH)
            logger.warning(f"Failed login attempt for username: {username} from IP: {client_ip}")
            raise UnauthorizedError("Invalid username or password")
        if not verify_password(password, user.password_hash):
            logger.warning(f"Failed login attempt for username: {username} from IP: {client_ip}")
            raise UnauthorizedError("Invalid username or password")
        if not user.is_active:
            logger.warning(f"Login attempt for inactive user: {username} (ID: {user.id}) from IP: {client_ip}")
            raise UnauthorizedError("User account is inactive")

        logger.info(f"Successful login: {user.username} (ID: {user.id}, role: {user.role.value}) from IP: {client_ip}")
        return issue_tokens(user)

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        payload = decode_refresh_token(refresh_token)
        if payload is None:
            raise UnauthorizedError("Invalid or expired refresh token", bearer=True)
        user = self.db.get(User, int(payload["sub"]))
        if user is None or not user.is_active:
            raise UnauthorizedError("User account is disabled", bearer=True)
        return issue_tokens(user)

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        if not verify_password(current_password, user.password_hash):
            raise ValidationError("Current password is incorrect")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        user.password_hash = get_password_hash(new_password)
        self.db.commit()
        logger.info(f"Password changed for user {user.username} (ID: {user.id})")


class UserService:
    """Staff account management."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, caps: Capabilities, user_id: int) -> User:
        if caps.user_id != user_id:
            caps.require(Permission.USER_VIEW)
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def list(
        self,
        caps: Capabilities,
        search: Optional[str] = None,
        role: Optional[UserRole] = None,
        is_active: Optional[bool] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[User], int]:
        caps.require(Permission.USER_VIEW)
        query = self.db.query(User)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(User.username.ilike(pattern), User.name.ilike(pattern), User.email.ilike(pattern))
            )
        if role is not None:
            query = query.filter(User.role == role)
        if is_active is not None:
            query = query.filter(User.is_active.is_(is_active))
        total = query.count()
        items = query.order_by(User.username).offset(skip).limit(limit).all()
        return items, total

    def _ensure_unique(self, username: Optional[str], email: Optional[str], exclude_id: Optional[int] = None) -> None:
        if username:
            query = self.db.query(User.id).filter(User.username == username)
            if exclude_id is not None:
                query = query.filter(User.id != exclude_id)
            if query.first():
                raise ConflictError(f"Username '{username}' is already taken")
        if email:
            query = self.db.query(User.id).filter(User.email == email)
            if exclude_id is not None:
                query = query.filter(User.id != exclude_id)
            if query.first():
                raise ConflictError(f"Email '{email}' is already registered")

    def register(
        self,
        caps: Capabilities,
        username: str,
        password: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        role: UserRole = UserRole.WAITER,
    ) -> User:
        caps.require(Permission.USER_MANAGE)
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        self._ensure_unique(username, email)
        user = User(
            username=username,
            email=email,
            name=name,
            role=role,
            password_hash=get_password_hash(password),
            is_active=True,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"User {user.username} registered with role {role.value} by user {caps.user_id}")
        return user

    def update(
        self,
        caps: Capabilities,
        user_id: int,
        name: Optional[str] = None,
        email: Optional[str] = None,
        role: Optional[UserRole] = None,
        is_active: Optional[bool] = None,
    ) -> User:
        caps.require(Permission.USER_MANAGE)
        user = self.get(caps, user_id)
        if user.id == caps.user_id and (role not in (None, user.role) or is_active is False):
            raise ForbiddenError("You cannot change your own role or deactivate yourself")
        if email is not None and email != user.email:
            self._ensure_unique(None, email, exclude_id=user.id)
            user.email = email
        if name is not None:
            user.name = name
        if role is not None:
            user.role = role
        if is_active is not None:
            user.is_active = is_active
        self.db.commit()
        self.db.refresh(user)
        return user

    def deactivate(self, caps: Capabilities, user_id: int) -> User:
        return self.update(caps, user_id, is_active=False)

    def delete(self, caps: Capabilities, user_id: int) -> None:
        caps.require(Permission.USER_MANAGE)
        if user_id == caps.user_id:
            raise ForbiddenError("You cannot delete your own account")
        user = self.get(caps, user_id)
        referenced = (
            self.db.query(Order.id).filter(Order.confirmed_by_id == user.id).first()
            or self.db.query(Payment.id).filter(Payment.processed_by_id == user.id).first()
        )
        if referenced:
            raise ConflictError(f"User {user.username} has order or payment history; deactivate instead")
        self.db.delete(user)
        self.db.commit()
        logger.info(f"User {user.username} (ID: {user_id}) deleted by user {caps.user_id}")
