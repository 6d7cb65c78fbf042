# clinicbook/modules/users/repository.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.core.errors import ConflictError, ValidationError
from clinicbook.modules.users.models import User, UserRole


async def get_by_id(session: AsyncSession, user_id: UUID) -> Optional[User]:
    """
    Returns a User by primary key or None if not found.
    """
    return await session.get(User, user_id)


async def _get_with_role(session: AsyncSession, user_id: UUID, role: UserRole) -> Optional[User]:
    stmt = select(User).where(User.id == user_id, User.role == role.value)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_patient_by_id_repo(
    session: AsyncSession, *, patient_id: UUID
) -> Optional[User]:
    """
    Return a patient by UUID or None if not found (enforces role='patient').
    """
    return await _get_with_role(session, patient_id, UserRole.PATIENT)


async def get_doctor_by_id_repo(
    session: AsyncSession, *, doctor_id: UUID
) -> Optional[User]:
    """
    Return a doctor by UUID or None if not found (enforces role='doctor').
    """
    return await _get_with_role(session, doctor_id, UserRole.DOCTOR)


async def create_user(
    session: AsyncSession,
    *,
    email: str,
    first_name: str,
    last_name: str,
    role: UserRole | str = UserRole.PATIENT,
    phone: Optional[str] = None,
    specialty: Optional[str] = None,
) -> User:
    """
    Inserts a new user row and returns the persisted ORM instance.

    Uniqueness and CHECK violations are mapped to domain errors.
    """
    role_value = role.value if isinstance(role, UserRole) else str(role)

    user = User(
        email=email.strip().lower(),
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        phone=phone,
        role=role_value,
        specialty=specialty,
        is_active=True,
    )

    session.add(user)
    try:
        # Flush to force INSERT and surface constraint violations here
        await session.flush()
    except IntegrityError as exc:
        message = str(exc.orig).lower() if exc.orig else str(exc).lower()
        if "uq_users_email" in message or "unique" in message:
            raise ConflictError("email already registered", code="email_already_exists") from exc
        raise ValidationError("user data violates DB constraints", code="invalid_user_data") from exc

    return user


async def list_doctors_repo(session: AsyncSession, *, specialty: Optional[str] = None) -> list[User]:
    conditions = [User.role == UserRole.DOCTOR.value]
    if specialty:
        conditions.append(User.specialty.ilike(f"%{specialty.strip()}%"))
    stmt = select(User).where(*conditions).order_by(User.last_name, User.id)
    return list((await session.execute(stmt)).scalars().all())
