# clinicbook/container.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinicbook.core.config import Settings
from clinicbook.db.base import utcnow
from clinicbook.modules.appointments.service import AppointmentService
from clinicbook.modules.records.service import ClinicalRecordService
from clinicbook.modules.records.store import (
    ClinicalRecordStore,
    InMemoryClinicalRecordStore,
    MongoClinicalRecordStore,
)


@dataclass
class Services:
    """Everything the routers need, built once per application."""

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    record_store: ClinicalRecordStore
    appointments: AppointmentService
    records: ClinicalRecordService


def make_record_store(settings: Settings) -> ClinicalRecordStore:
    if settings.RECORD_STORE == "mongo":
        return MongoClinicalRecordStore(settings.MONGO_DSN, settings.MONGO_DB)
    return InMemoryClinicalRecordStore()


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    record_store: Optional[ClinicalRecordStore] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    store = record_store if record_store is not None else make_record_store(settings)
    appointments = AppointmentService(
        session_factory,
        cancellation_cutoff=timedelta(hours=settings.CANCELLATION_CUTOFF_HOURS),
        no_show_releases_slot=settings.NO_SHOW_RELEASES_SLOT,
        timeout=settings.BOOKING_TIMEOUT_SECONDS,
        clock=clock,
    )
    records = ClinicalRecordService(store, appointments, timeout=settings.BOOKING_TIMEOUT_SECONDS)
    return Services(
        settings=settings,
        session_factory=session_factory,
        record_store=store,
        appointments=appointments,
        records=records,
    )
