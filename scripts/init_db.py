import asyncio
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import create_tables, engine
from core.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


async def init_database():
    logger.info("Connecting to database...")
    try:
        await create_tables()
        logger.info("Tables created successfully.")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_database())
