# init_db.py
import argparse
import asyncio
import logging

from clinicbook.core.config import settings
from clinicbook.db.base import Base
from clinicbook.db.sql import engine, init_db

logger = logging.getLogger("init_db")


async def init_models(reset: bool = False):
    if reset:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.warning("Dropped all tables on %s", engine.url.render_as_string(hide_password=True))

    await init_db(engine)
    await engine.dispose()
    logger.info("Database schema ready")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the clinic booking schema")
    parser.add_argument("--reset", action="store_true", help="drop every table first")
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL.upper())
    asyncio.run(init_models(reset=args.reset))
