"""
Create the clinic and import run tables.

Usage:
    python scripts/init_db.py
"""

import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import create_tables, engine
from core.logging import setup_logging

logger = logging.getLogger(__name__)


async def init_database():
    target = settings.DATABASE_URL.split("@")[-1]
    logger.info(f"Connecting to database {target}...")
    try:
        await create_tables(engine)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())
