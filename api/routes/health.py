"""
Health check endpoint with database and import run status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from api.dependencies import get_db
from schemas.api import HealthCheckResponse
from ingestion.loaders.import_run_store import ImportRunStore
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Number of import runs per status
    """
    db_connected = False
    runs_by_status = {}

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
        runs_by_status = await ImportRunStore(db).count_by_status()
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {str(e)}")

    return HealthCheckResponse(
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        runs_by_status=runs_by_status,
    )
