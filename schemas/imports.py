"""
Pydantic schemas for import results, summaries and duplicate review
"""

from pydantic import BaseModel, Field, root_validator
from typing import Optional, List, Dict, Any
from schemas.clinic import ClinicCreate
from models.base import ImportRunStatus, DuplicateAction, DuplicatePolicy
from core.config import settings


class ImportResult(BaseModel):
    """
    Per-record outcome of the record processor.

    Either {success: True, data} or {success: False, error}, never both.
    """
    success: bool
    data: Optional[ClinicCreate] = None
    error: Optional[str] = None

    @root_validator(skip_on_failure=True)
    def check_exclusive(cls, values):
        if values.get("success"):
            if values.get("data") is None or values.get("error") is not None:
                raise ValueError("a successful result carries data and no error")
        else:
            if values.get("error") is None or values.get("data") is not None:
                raise ValueError("a failed result carries an error and no data")
        return values

    @classmethod
    def ok(cls, data: ClinicCreate) -> "ImportResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ImportResult":
        return cls(success=False, error=error)


class ImportFailure(BaseModel):
    """A rejected raw record and the reason, as shown to operators"""
    record: Dict[str, Any]
    error: str


class DuplicateMatch(BaseModel):
    """An existing clinic that an incoming record appears to duplicate"""
    clinic_id: int
    clinic: Dict[str, Any]
    reason: str
    confidence: float = Field(..., ge=0, le=1)


class DuplicateCandidate(BaseModel):
    """A processed record held back for an operator decision"""
    candidate_id: str
    record: Dict[str, Any]
    clinic: ClinicCreate
    match: DuplicateMatch


class DuplicateDecision(BaseModel):
    candidate_id: str
    action: DuplicateAction


class ImportSummary(BaseModel):
    """
    Aggregate outcome of an import run.

    Invariants:
    - success + failed + len(pending_duplicates) == total
    - created + merged + skipped == success
    - pending_duplicates is empty unless the run awaits decisions
    """
    run_id: Optional[str] = None
    status: ImportRunStatus
    total: int = Field(0, ge=0)
    success: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    created: int = Field(0, ge=0)
    merged: int = Field(0, ge=0)
    skipped: int = Field(0, ge=0)
    failures: List[ImportFailure] = Field(default_factory=list)
    pending_duplicates: List[DuplicateCandidate] = Field(default_factory=list)
    failure_log_path: Optional[str] = None
    dry_run: bool = False

    @root_validator(skip_on_failure=True)
    def check_partition(cls, values):
        pending = len(values.get("pending_duplicates") or [])
        if values["success"] + values["failed"] + pending != values["total"]:
            raise ValueError("success, failed and pending must partition total")
        if values["created"] + values["merged"] + values["skipped"] != values["success"]:
            raise ValueError("created, merged and skipped must partition success")
        if pending and values["status"] != ImportRunStatus.DUPLICATES_PENDING:
            raise ValueError("only a run awaiting decisions has pending duplicates")
        return values

    class Config:
        frozen = True


class ImportOptions(BaseModel):
    """Per-run importer options, persisted on the run row"""
    check_duplicates: bool = True
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.DEFER
    batch_size: int = Field(default_factory=lambda: settings.IMPORT_BATCH_SIZE, ge=1, le=500)
    dry_run: bool = False
    failure_log_dir: str = Field(default_factory=lambda: settings.FAILURE_LOG_DIR)
