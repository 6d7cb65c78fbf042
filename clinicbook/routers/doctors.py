# clinicbook/routers/doctors.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.core.permission import CallerContext
from clinicbook.db.sql import get_session
from clinicbook.dependencies import get_current_caller
from clinicbook.modules.users import service as users_svc
from clinicbook.modules.users.schemas import UserPublic

router = APIRouter(prefix="/doctors", tags=["doctors"])


@router.get(
    "",
    response_model=list[UserPublic],
    summary="List doctors, optionally by specialty",
)
async def doctors_index(
    specialty: Optional[str] = Query(None, description="Substring match on specialty"),
    session: AsyncSession = Depends(get_session),
    _: CallerContext = Depends(get_current_caller),
):
    return await users_svc.list_doctors(session, specialty)
