"""
Create all tables on the configured database
"""

import asyncio
import logging

from core.config import settings
from core.database import create_tables, engine
from core.logging import setup_logging

logger = logging.getLogger(__name__)


async def init_database():
    host = settings.DATABASE_URL.split("@")[-1]
    logger.info(f"Creating tables on {host}")
    try:
        await create_tables(engine)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())
