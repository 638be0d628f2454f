"""
Clinic record store: lookups, slug reservations and bounded batched writes
"""

from typing import Any, Dict, List, Optional, Set, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime
from models.clinic import Clinic
from core.config import settings
from core.exceptions import BatchCommitError, DatabaseError, LoadError
import logging

logger = logging.getLogger(__name__)

# Hard ceiling of operations the store accepts in one batch
STORE_BATCH_LIMIT = 500


class ClinicStore:
    """
    Record store for clinics.

    Provides:
    - Point lookup by id and equality-predicate queries
    - Slug existence checks that also see slugs reserved earlier in the
      run but not yet committed
    - BatchWriter for bounded multi-record writes

    Slug uniqueness is check-then-set. Within a run, reservations make it
    safe; across concurrent runs the unique index on clinics.slug is the
    backstop (the losing batch fails to commit).
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session
        self._reserved_slugs: Set[str] = set()

    async def get(self, clinic_id: int) -> Optional[Clinic]:
        try:
            return await self.db.get(Clinic, clinic_id)
        except SQLAlchemyError as e:
            raise DatabaseError(
                "Failed to fetch clinic",
                context={"operation": "SELECT", "table_name": "clinics", "clinic_id": clinic_id},
                original_exception=e
            )

    async def find_by(self, **equals: Any) -> List[Clinic]:
        """
        Clinics whose columns equal every given value.

        Example:
            await store.find_by(name="Austin Men's Clinic", zip="78701")
        """
        stmt = select(Clinic)
        for column, value in equals.items():
            stmt = stmt.where(getattr(Clinic, column) == value)

        try:
            result = await self.db.execute(stmt.order_by(Clinic.id))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise DatabaseError(
                "Failed to query clinics",
                context={"operation": "SELECT", "table_name": "clinics", "predicate": list(equals)},
                original_exception=e
            )

    async def slug_exists(self, slug: str) -> bool:
        if slug in self._reserved_slugs:
            return True
        rows = await self.find_by(slug=slug)
        return bool(rows)

    def reserve_slug(self, slug: str):
        self._reserved_slugs.add(slug)

    def release_slug(self, slug: str):
        self._reserved_slugs.discard(slug)

    def is_reserved(self, slug: str) -> bool:
        return slug in self._reserved_slugs

    def batch(self, max_operations: Optional[int] = None, actor: Optional[str] = None) -> "BatchWriter":
        return BatchWriter(
            self.db,
            max_operations=max_operations or settings.IMPORT_BATCH_SIZE,
            actor=actor
        )


class BatchWriter:
    """
    Buffered clinic writes committed together.

    The writer is owned by one import run and never shared. It refuses to
    queue more than max_operations operations; callers commit when full.
    """

    def __init__(self, db_session: AsyncSession, max_operations: int, actor: Optional[str] = None):
        if max_operations < 1 or max_operations > STORE_BATCH_LIMIT:
            raise ValueError(f"max_operations must be between 1 and {STORE_BATCH_LIMIT}")
        self.db = db_session
        self.max_operations = max_operations
        self.actor = actor
        self._creates: List[Dict[str, Any]] = []
        self._updates: List[Tuple[int, Dict[str, Any]]] = []
        self.batches_committed = 0
        self.operations_committed = 0

    def __len__(self) -> int:
        return len(self._creates) + len(self._updates)

    @property
    def is_full(self) -> bool:
        return len(self) >= self.max_operations

    def _check_capacity(self):
        if self.is_full:
            raise LoadError(
                "Batch is full; commit before queueing more operations",
                context={"max_operations": self.max_operations}
            )

    def create(self, values: Dict[str, Any]):
        """Queue a new clinic row"""
        self._check_capacity()
        self._creates.append(dict(values))

    def update(self, clinic_id: int, changes: Dict[str, Any]):
        """Queue changes to an existing clinic"""
        self._check_capacity()
        self._updates.append((clinic_id, dict(changes)))

    async def commit(self) -> int:
        """
        Write and commit every queued operation.

        Returns:
            Number of operations committed (0 for an empty batch)

        Raises:
            BatchCommitError: Nothing of this batch is written; earlier
                batches stay committed
        """
        count = len(self)
        if count == 0:
            return 0

        now = datetime.utcnow()
        try:
            for values in self._creates:
                values.setdefault("created_at", now)
                values.setdefault("last_updated", now)
                if self.actor:
                    values.setdefault("last_updated_by", self.actor)
                self.db.add(Clinic(**values))

            for clinic_id, changes in self._updates:
                changes.setdefault("last_updated", now)
                if self.actor:
                    changes.setdefault("last_updated_by", self.actor)
                await self.db.execute(
                    update(Clinic).where(Clinic.id == clinic_id).values(**changes)
                )

            await self.db.commit()

        except SQLAlchemyError as e:
            await self.db.rollback()
            raise BatchCommitError(
                "Failed to commit clinic batch",
                context={
                    "batch_number": self.batches_committed + 1,
                    "batch_operations": count,
                    "records_committed": self.operations_committed,
                    "table_name": "clinics",
                },
                original_exception=e
            )

        finally:
            self._creates = []
            self._updates = []

        self.batches_committed += 1
        self.operations_committed += count
        logger.info(f"Batch {self.batches_committed}: committed {count} clinic operations")
        return count
