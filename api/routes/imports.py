"""
Import endpoints: upload, run status, duplicate review and decisions
"""

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from typing import Optional
import logging

from api.dependencies import get_importer
from api.middleware import request_actor
from core.exceptions import (
    DuplicateDecisionError,
    ExtractionError,
    ImportRunNotFoundError,
    InvalidRunStateError,
)
from ingestion.extractors.factory import get_record_source
from ingestion.runner import ClinicImporter
from models.base import ImportRunStatus
from schemas.api import (
    DecisionRequest,
    ImportQueuedResponse,
    ImportRunListResponse,
    ImportRunResponse,
    PendingDuplicatesResponse,
)
from schemas.imports import DuplicateCandidate, ImportSummary

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/imports", tags=["Imports"])


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "-")


async def _get_run_or_404(importer: ClinicImporter, run_id: str):
    try:
        return await importer.runs.get(run_id)
    except ImportRunNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.post("", response_model=ImportQueuedResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_import(
    request: Request,
    file: UploadFile = File(..., description="CSV or JSON file of clinics"),
    source: Optional[str] = Form(None, description="Provenance recorded on every clinic"),
    actor: Optional[str] = Form(None, description="Who submitted the import; defaults to the X-Actor header"),
    importer: ClinicImporter = Depends(get_importer),
):
    """
    Parse an uploaded file and queue it as an import run.

    The file is parsed immediately; a malformed file is rejected with 400
    and no run is created. The run is executed by the import scheduler.
    """
    request_id = _request_id(request)
    content = await file.read()
    logger.info(f"[{request_id}] POST /imports - {file.filename} ({len(content)} bytes)")

    try:
        records = get_record_source(file.filename or "", content).read_records()
    except ExtractionError as e:
        logger.warning(f"[{request_id}] Rejected upload {file.filename}: {e.message}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    run = await importer.queue(
        records, source=source, actor=request_actor(request, actor), file_name=file.filename
    )

    return ImportQueuedResponse(
        run_id=str(run.run_id),
        status=run.status,
        total=run.total,
        file_name=run.file_name,
    )


@router.get("", response_model=ImportRunListResponse)
async def list_imports(
    limit: int = Query(20, ge=1, le=100, description="Number of recent runs to return"),
    importer: ClinicImporter = Depends(get_importer),
):
    """Most recent import runs, newest first (failures omitted)"""
    runs = await importer.runs.recent(limit)
    return ImportRunListResponse(runs=[ImportRunResponse.from_run(r, include_failures=False) for r in runs])


@router.get("/{run_id}", response_model=ImportRunResponse)
async def get_import(run_id: str, importer: ClinicImporter = Depends(get_importer)):
    """Run status, counters and the failure list"""
    run = await _get_run_or_404(importer, run_id)
    return ImportRunResponse.from_run(run)


@router.get("/{run_id}/duplicates", response_model=PendingDuplicatesResponse)
async def get_pending_duplicates(run_id: str, importer: ClinicImporter = Depends(get_importer)):
    """Candidates flagged as possible duplicates, with the matched clinic and reason"""
    run = await _get_run_or_404(importer, run_id)
    return PendingDuplicatesResponse(
        run_id=str(run.run_id),
        status=run.status,
        candidates=[DuplicateCandidate.model_validate(c) for c in (run.pending_duplicates or [])],
    )


@router.post("/{run_id}/decisions", response_model=ImportSummary)
async def submit_decisions(
    request: Request,
    run_id: str,
    body: DecisionRequest,
    importer: ClinicImporter = Depends(get_importer),
):
    """
    Apply merge / create / skip decisions and finalize the run.

    - 404 if the run does not exist
    - 409 if the run is not awaiting decisions
    - 422 if decisions name unknown candidates or leave some undecided
    """
    request_id = _request_id(request)
    run = await _get_run_or_404(importer, run_id)
    logger.info(f"[{request_id}] POST /imports/{run_id}/decisions - {len(body.decisions)} decisions")

    if ImportRunStatus(run.status) != ImportRunStatus.DUPLICATES_PENDING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Import run is {ImportRunStatus(run.status).value}, not awaiting decisions",
        )

    try:
        return await importer.resume(run.run_id, body.decisions, actor=request_actor(request, body.actor))
    except InvalidRunStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except DuplicateDecisionError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "message": e.message,
                "unknown_candidates": e.context.get("unknown_candidates", []),
                "undecided_candidates": e.context.get("undecided_candidates", []),
            },
        )
