"""
Persistence for import runs (the resumable run state machine)
"""

from typing import Any, Dict, List, Optional, Union
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime
import uuid
from models.import_run import ImportRun
from models.base import ImportRunStatus
from core.exceptions import DatabaseError, ImportRunNotFoundError
import logging

logger = logging.getLogger(__name__)


def parse_run_id(run_id: Union[str, uuid.UUID]) -> uuid.UUID:
    if isinstance(run_id, uuid.UUID):
        return run_id
    try:
        return uuid.UUID(str(run_id))
    except ValueError as e:
        raise ImportRunNotFoundError(
            f"Import run not found: {run_id}",
            context={"run_id": str(run_id)},
            original_exception=e
        )


class ImportRunStore:
    """Create, load and save ImportRun rows"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def create(
        self,
        source: str,
        actor: str,
        file_name: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
        raw_records: Optional[List[Dict[str, Any]]] = None,
        status: ImportRunStatus = ImportRunStatus.CREATED,
    ) -> ImportRun:
        """Insert a new run and commit it"""
        run = ImportRun(
            run_id=uuid.uuid4(),
            source=source,
            actor=actor,
            file_name=file_name,
            status=status,
            started_at=datetime.utcnow(),
            total=len(raw_records) if raw_records is not None else 0,
            raw_records=raw_records,
            pending_duplicates=[],
            failures=[],
            options=options or {},
        )
        self.db.add(run)
        await self.save(run)
        await self.db.refresh(run)
        logger.info(f"Created import run {run.run_id} (source={source}, actor={actor})")
        return run

    async def get(self, run_id: Union[str, uuid.UUID]) -> ImportRun:
        """
        Raises:
            ImportRunNotFoundError: No run with this id
        """
        run_uuid = parse_run_id(run_id)
        try:
            result = await self.db.execute(select(ImportRun).where(ImportRun.run_id == run_uuid))
            run = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseError(
                "Failed to fetch import run",
                context={"operation": "SELECT", "table_name": "import_runs", "run_id": str(run_uuid)},
                original_exception=e
            )

        if run is None:
            raise ImportRunNotFoundError(
                f"Import run not found: {run_uuid}",
                context={"run_id": str(run_uuid)}
            )
        return run

    async def next_queued(self) -> Optional[ImportRun]:
        """Oldest run submitted over the API and not yet started"""
        result = await self.db.execute(
            select(ImportRun)
            .where(ImportRun.status == ImportRunStatus.CREATED)
            .order_by(ImportRun.started_at, ImportRun.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def count_by_status(self) -> Dict[str, int]:
        result = await self.db.execute(
            select(ImportRun.status, func.count(ImportRun.id)).group_by(ImportRun.status)
        )
        return {ImportRunStatus(status).value: count for status, count in result.all()}

    async def recent(self, limit: int = 20) -> List[ImportRun]:
        result = await self.db.execute(
            select(ImportRun).order_by(ImportRun.started_at.desc(), ImportRun.id.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def save(self, run: ImportRun):
        """Commit pending changes to the run"""
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DatabaseError(
                "Failed to save import run",
                context={"operation": "UPDATE", "table_name": "import_runs", "run_id": str(run.run_id)},
                original_exception=e
            )
