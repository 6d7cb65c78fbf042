# clinicbook/routers/health.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from pymongo.errors import PyMongoError

from clinicbook.container import Services
from clinicbook.db.sql import get_session, ping_db
from clinicbook.dependencies import get_services

router = APIRouter()

@router.get("/health")
async def health_root():
    return {"status": "ok"}

@router.get("/health/db")
async def health_db(
    session: AsyncSession = Depends(get_session),
    services: Services = Depends(get_services),
):
    """
    Checks both stores. Returns 503 if the relational store is unreachable
    (useful for readiness/liveness checks).
    """
    try:
        await ping_db(session)
    except SQLAlchemyError as exc:
        # Don't expose internal details
        raise HTTPException(status_code=503, detail="database_unavailable") from exc

    try:
        records_ok = await services.record_store.ping()
    except PyMongoError:
        records_ok = False
    return {
        "status": "ok" if records_ok else "degraded",
        "database": session.bind.dialect.name,
        "record_store": "ok" if records_ok else "unavailable",
    }
