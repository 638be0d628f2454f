from sqlalchemy import Column, String, DateTime, Float, Integer, Text, Index, Uuid
from datetime import datetime
import uuid
from models.base import Base, BigIntegerPK, JSONType, ImportRunStatus, RUN_TRANSITIONS, value_enum
from core.exceptions import InvalidRunStateError


class ImportRun(Base):
    """
    One bulk import, persisted as a resumable state machine.

    created -> processing -> [duplicates_pending ->] finalizing -> complete
    (failed / cancelled reachable from any non-terminal state)

    Purpose:
    - Audit trail of every import (source, actor, counts, failures)
    - Queue for imports submitted over the API (raw_records)
    - Survive a process restart while duplicates await operator decisions
      (pending_duplicates holds the processed candidates)
    """
    __tablename__ = "import_runs"

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    run_id = Column(Uuid, default=uuid.uuid4, unique=True, nullable=False, index=True)

    # Provenance
    source = Column(String(100), nullable=False, index=True)
    actor = Column(String(100), nullable=False)
    file_name = Column(String(500), nullable=True)

    status = Column(value_enum(ImportRunStatus), default=ImportRunStatus.CREATED, nullable=False, index=True)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    total = Column(Integer, default=0, nullable=False)
    success = Column(Integer, default=0, nullable=False)
    failed = Column(Integer, default=0, nullable=False)
    created = Column(Integer, default=0, nullable=False)
    merged = Column(Integer, default=0, nullable=False)
    skipped = Column(Integer, default=0, nullable=False)

    # Payloads
    raw_records = Column(JSONType, nullable=True)
    pending_duplicates = Column(JSONType, nullable=False, default=list)
    failures = Column(JSONType, nullable=False, default=list)
    options = Column(JSONType, nullable=False, default=dict)

    # Error tracking
    error_message = Column(Text, nullable=True)
    failure_log_path = Column(String(1024), nullable=True)

    __table_args__ = (
        Index("idx_import_run_status", "status", "started_at"),
    )

    def transition(self, new_status: ImportRunStatus):
        """Move to new_status or raise InvalidRunStateError"""
        current = ImportRunStatus(self.status)
        if new_status not in RUN_TRANSITIONS[current]:
            raise InvalidRunStateError(
                f"Cannot move import run from {current.value} to {new_status.value}",
                context={
                    "run_id": str(self.run_id),
                    "current_status": current.value,
                    "requested_status": new_status.value,
                }
            )
        self.status = new_status

    @property
    def is_terminal(self) -> bool:
        return not RUN_TRANSITIONS[ImportRunStatus(self.status)]
