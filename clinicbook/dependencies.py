# clinicbook/dependencies.py
from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from clinicbook.container import Services
from clinicbook.core.errors import AuthenticationError, AuthorizationError
from clinicbook.core.permission import CallerContext
from clinicbook.core.security import decode_token, is_access_token, InvalidTokenError
from clinicbook.modules.appointments.service import AppointmentService
from clinicbook.modules.records.service import ClinicalRecordService
from clinicbook.modules.users.models import UserRole

bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_appointment_service(services: Services = Depends(get_services)) -> AppointmentService:
    return services.appointments


def get_record_service(services: Services = Depends(get_services)) -> ClinicalRecordService:
    return services.records


async def get_current_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    services: Services = Depends(get_services),
) -> CallerContext:
    """
    Resolve (role, subject id) from the bearer token. No database lookup:
    the token issuer is trusted for identity.
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("missing bearer token", code="missing_token")
    try:
        payload = decode_token(credentials.credentials, secret=services.settings.JWT_SECRET)
    except InvalidTokenError as exc:
        raise AuthenticationError("invalid or expired token", code="invalid_token") from exc

    if not is_access_token(payload):
        raise AuthenticationError("wrong token type", code="invalid_token_type")

    try:
        return CallerContext(role=UserRole(payload.get("role")), subject_id=UUID(str(payload["sub"])))
    except ValueError as exc:
        raise AuthenticationError("malformed token claims", code="invalid_claims") from exc


def require_roles(*roles: str):
    """
    Role guard factory. Example: Depends(require_roles("admin", "doctor"))
    """
    async def _guard(caller: CallerContext = Depends(get_current_caller)) -> CallerContext:
        if caller.role.value not in roles:
            raise AuthorizationError("role not allowed", code="insufficient_role")
        return caller

    return _guard
