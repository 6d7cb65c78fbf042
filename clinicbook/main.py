# clinicbook/main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from clinicbook.container import Services, build_services
from clinicbook.core.config import Settings, settings as default_settings
from clinicbook.core.errors import DomainError, domain_error_handler
from clinicbook.db.sql import AsyncSessionLocal, init_db
from clinicbook.modules.records.store import MongoClinicalRecordStore
from clinicbook.routers import admin, appointments, availability, doctors, health, records

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Build the API. Tests pass their own `services` (own engine, clock, record store).
    """
    settings = settings or default_settings

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Wire services, create missing tables and open the record store.
        """
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings, AsyncSessionLocal)

        svc: Services = app.state.services
        await init_db(svc.session_factory.kw["bind"])

        store = svc.record_store
        if isinstance(store, MongoClinicalRecordStore):
            await store.connect()
        logger.info("Clinic booking API started (%s)", settings.APP_ENV)
        yield
        if isinstance(store, MongoClinicalRecordStore):
            await store.close()
        logger.info("Clinic booking API stopped")

    app = FastAPI(
        title="Clinic Booking API",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_exception_handler(DomainError, domain_error_handler)

    # Routing
    app.include_router(health.router, prefix=settings.API_PREFIX, tags=["health"])
    app.include_router(doctors.router, prefix=settings.API_PREFIX)
    app.include_router(availability.router, prefix=settings.API_PREFIX)
    app.include_router(appointments.router, prefix=settings.API_PREFIX)
    app.include_router(records.router, prefix=settings.API_PREFIX)
    app.include_router(admin.router, prefix=settings.API_PREFIX)

    @app.get("/")
    def root():
        return {"message": "Clinic booking API running"}

    return app


app = create_app()
