"""Domain exceptions raised by services.

Every exception carries the HTTP status it maps to; ``main.py`` registers a
single handler for ``DomainError`` so route code never translates business
rule failures by hand.
"""

from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class DomainError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def headers(self) -> Optional[Dict[str, str]]:
        return None


class ValidationError(DomainError):
    """Input is well-formed but violates a business rule (bad totals, unavailable items)."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "validation_error"


class NotFoundError(DomainError):
    """Referenced entity does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"

    def __init__(self, entity: str, entity_id: Any = None, message: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        if message is None:
            message = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(message)


class ConflictError(DomainError):
    """Requested change conflicts with current state."""

    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class InvalidTransitionError(ConflictError):
    """A status change that is not an edge of the state machine."""

    def __init__(self, machine: str, current: Any, target: Any):
        self.machine = machine
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot change {machine} status from {_name(current)} to {_name(target)}",
            details={"from": _name(current), "to": _name(target)},
        )


class UnauthorizedError(DomainError):
    """Missing or invalid credential (staff token or table-session secret)."""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthorized"

    def __init__(self, message: str = "Not authenticated", *, bearer: bool = False):
        self.bearer = bearer
        super().__init__(message)

    def headers(self) -> Optional[Dict[str, str]]:
        if self.bearer:
            return {"WWW-Authenticate": "Bearer"}
        return None


class ForbiddenError(DomainError):
    """Authenticated caller lacks a required permission."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class ServiceUnavailableError(DomainError):
    """An external collaborator is not configured or not reachable."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "service_unavailable"


class WebhookRejected(DomainError):
    """Inbound bank transfer could not be matched to a payment."""

    code = "webhook_rejected"

    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST):
        self.status_code = status_code
        super().__init__(message)


def _name(value: Any) -> str:
    return getattr(value, "value", str(value))


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Render a DomainError as ``{"detail": ..., "code": ...}``."""
    content: Dict[str, Any] = {"detail": exc.message, "code": exc.code}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers())
