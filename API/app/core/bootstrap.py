import logging

from sqlalchemy.ext.asyncio import AsyncEngine

import app.models.entities  # noqa: F401  (registers tables on Base.metadata)
from app.core.settings import settings
from app.models.base import Base

logger = logging.getLogger(__name__)


async def initialize_database(engine: AsyncEngine) -> None:
    """Create missing tables. Production schemas are owned by the Alembic migrations."""
    if not settings.create_schema_on_start:
        logger.info("Schema creation on start disabled; relying on migrations")
        return
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured | tables=%s", len(Base.metadata.tables))
