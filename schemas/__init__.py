"""
Pydantic schemas for data validation and serialization.

Schemas:
    clinic: Canonical clinic record (ClinicCreate) and its nested parts
    imports: ImportResult, ImportSummary, duplicate candidates and decisions
    api: API endpoint request/response schemas

Usage:
    from schemas.clinic import ClinicCreate
    from schemas.imports import ImportResult, ImportSummary

Example:
    result = ImportResult.fail("Missing required fields: state")
    assert result.success is False
    assert result.data is None
"""

__all__ = [
    "Coordinates",
    "ValidationStatus",
    "TrafficMeta",
    "ClinicCreate",
    "ImportResult",
    "ImportFailure",
    "ImportOptions",
    "ImportSummary",
    "DuplicateCandidate",
    "DuplicateDecision",
    "DuplicateMatch",
    "HealthCheckResponse",
    "ImportQueuedResponse",
    "ImportRunResponse",
    "ImportRunListResponse",
    "PendingDuplicatesResponse",
    "DecisionRequest",
    "ErrorResponse",
]
