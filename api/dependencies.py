"""
FastAPI dependencies
"""

from typing import AsyncGenerator
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import async_session_maker
from ingestion.runner import ClinicImporter


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Database session per request"""
    async with async_session_maker() as session:
        yield session


def get_importer(db: AsyncSession = Depends(get_db)) -> ClinicImporter:
    return ClinicImporter(db)
