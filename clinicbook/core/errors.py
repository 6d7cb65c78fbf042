# clinicbook/core/errors.py
from __future__ import annotations

from typing import Any, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class DomainError(Exception):
    """
    Base class for every error the booking core raises.

    `code` is a stable machine-readable identifier returned to API clients,
    the message is free text for humans and logs.
    """

    code = "domain_error"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        if code:
            self.code = code
        super().__init__(message or self.code)


class ValidationError(DomainError):
    """Malformed or out-of-policy input (e.g. appointment time in the past)."""

    code = "validation_error"


class NotFoundError(DomainError):
    """Referenced entity does not exist."""

    code = "not_found"


class ConflictError(DomainError):
    """Uniqueness violation (e.g. duplicate slot for a doctor and start time)."""

    code = "conflict"


class AlreadyBookedError(ConflictError):
    """A slot exists but another request booked it first."""

    code = "slot_already_booked"


class AuthenticationError(DomainError):
    code = "not_authenticated"


class AuthorizationError(DomainError):
    """Caller is not allowed to act on the resource."""

    code = "forbidden"


class InvalidStateError(DomainError):
    """Operation is not valid in the current lifecycle state."""

    code = "invalid_state"


class PolicyError(DomainError):
    """Business rule rejection (e.g. cancellation inside the cutoff window)."""

    code = "policy_violation"


class AppointmentNotLinkedError(NotFoundError, InvalidStateError):
    """A clinical record write references an appointment missing from the relational store."""

    code = "appointment_not_found"


class PartialFailureError(DomainError):
    """
    A multi-step write completed only partially.

    `resource` names what is left inconsistent so a retry or an operator can
    reconcile it; `result` keeps whatever the completed step produced.
    """

    code = "partial_failure"

    def __init__(
        self,
        message: str | None = None,
        *,
        resource: str,
        result: Any = None,
        code: str | None = None,
    ):
        super().__init__(message, code=code)
        self.resource = resource
        self.result = result


class OperationTimeoutError(DomainError, TimeoutError):
    """Bounded wait exceeded; no partial mutation was kept."""

    code = "operation_timeout"


_STATUS_BY_ERROR: list[tuple[type[DomainError], int]] = [
    # order matters: most specific first
    (PartialFailureError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (OperationTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (PolicyError, status.HTTP_400_BAD_REQUEST),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
]


def http_status_for(exc: DomainError) -> int:
    for klass, code in _STATUS_BY_ERROR:
        if isinstance(exc, klass):
            return code
    return status.HTTP_400_BAD_REQUEST


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    body: dict[str, Optional[str]] = {"detail": exc.code, "message": str(exc)}
    if isinstance(exc, PartialFailureError):
        body["resource"] = exc.resource
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(body, status_code=http_status_for(exc), headers=headers)
