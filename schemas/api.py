"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import ImportRunStatus
from schemas.imports import DuplicateCandidate, DuplicateDecision, ImportFailure

# ============================================================================
# Health Check Schemas
# ============================================================================


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    database_connected: bool
    runs_by_status: Dict[str, int] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    # Declared last so the validator sees the fields above
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Unhealthy without a database; degraded when runs have failed"""
        if not values.get("database_connected", False):
            return "unhealthy"
        if values.get("runs_by_status", {}).get(ImportRunStatus.FAILED.value, 0) > 0:
            return "degraded"
        return "healthy"

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "runs_by_status": {"complete": 12, "duplicates_pending": 1}
            }
        }

# ============================================================================
# Import Run Schemas
# ============================================================================


class ImportQueuedResponse(BaseModel):
    """Returned when an upload has been parsed and queued"""
    run_id: str
    status: ImportRunStatus
    total: int
    file_name: Optional[str] = None

    class Config:
        use_enum_values = True


class ImportRunResponse(BaseModel):
    """Import run status and summary"""
    run_id: str
    status: ImportRunStatus
    source: str
    actor: str
    file_name: Optional[str] = None

    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None

    total: int = 0
    success: int = 0
    failed: int = 0
    created: int = 0
    merged: int = 0
    skipped: int = 0
    pending_duplicates: int = 0

    failures: List[ImportFailure] = Field(default_factory=list)
    failure_log_path: Optional[str] = None
    error_message: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_run(cls, run, include_failures: bool = True):
        return cls(
            run_id=str(run.run_id),
            status=run.status,
            source=run.source,
            actor=run.actor,
            file_name=run.file_name,
            started_at=run.started_at,
            completed_at=run.completed_at,
            duration_seconds=run.duration_seconds,
            total=run.total,
            success=run.success,
            failed=run.failed,
            created=run.created,
            merged=run.merged,
            skipped=run.skipped,
            pending_duplicates=len(run.pending_duplicates or []),
            failures=(run.failures or []) if include_failures else [],
            failure_log_path=run.failure_log_path,
            error_message=run.error_message,
            options=run.options or {},
        )

    class Config:
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "run_id": "550e8400-e29b-41d4-a716-446655440000",
                "status": "complete",
                "source": "csv-upload",
                "actor": "admin@example.com",
                "file_name": "clinics.csv",
                "started_at": "2024-01-15T10:30:00Z",
                "completed_at": "2024-01-15T10:31:12Z",
                "total": 3,
                "success": 2,
                "failed": 1,
                "created": 2,
                "failures": [
                    {"record": {"name": "Sample Clinic", "city": "Austin"}, "error": "Missing required fields: state"}
                ]
            }
        }


class ImportRunListResponse(BaseModel):
    runs: List[ImportRunResponse]


class PendingDuplicatesResponse(BaseModel):
    """Candidates awaiting an operator decision"""
    run_id: str
    status: ImportRunStatus
    candidates: List[DuplicateCandidate] = Field(default_factory=list)

    class Config:
        use_enum_values = True


class DecisionRequest(BaseModel):
    """One decision per pending candidate"""
    decisions: List[DuplicateDecision] = Field(..., min_length=1)
    actor: Optional[str] = Field(None, description="Who made the decisions; defaults to the run's actor")

    class Config:
        json_schema_extra = {
            "example": {
                "decisions": [
                    {"candidate_id": "4f1c...", "action": "merge"},
                    {"candidate_id": "9a2e...", "action": "skip"}
                ],
                "actor": "admin@example.com"
            }
        }


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[Any] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Import run not found",
                "detail": {"run_id": "550e8400-e29b-41d4-a716-446655440000"},
                "timestamp": "2024-01-15T10:30:00Z"
            }
        }
