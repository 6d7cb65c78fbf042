from __future__ import annotations

from uuid import UUID

from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.db.base import utcnow
from clinicbook.modules.users.models import AuditLog


async def write_audit_log(
    session: AsyncSession,
    user_id: UUID | None,
    action: str,
    details: str | None = None,
):
    """
    Write an audit log entry inside the caller's transaction.

    action:
        "BOOK_APPOINTMENT"
        "RESCHEDULE_APPOINTMENT"
        "CANCEL_APPOINTMENT"
        "COMPLETE_APPOINTMENT"
        "NO_SHOW_APPOINTMENT"
    """
    stmt = insert(AuditLog).values(
        user_id=user_id,
        action=action,
        details=details,
        timestamp=utcnow(),
    )
    await session.execute(stmt)
