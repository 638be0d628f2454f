# ============================================================================
# File: ingestion/runner.py
# Description: Batch importer for clinic records with resumable runs
# ============================================================================
"""
Clinic Importer - streams parsed records through the record processor and
writes them to the clinic store in bounded batches.

This module provides:
- Sequential per-record processing (slug reservation and the Nominatim
  delay both require it)
- Partial failure support (rejected records are listed, never dropped)
- Duplicate detection with deferred operator decisions (pause/resume)
- Batched writes under the store's per-batch operation ceiling
- Import run tracking as a persisted state machine
- Failure log artifact per run
"""

from typing import Any, Dict, List, Optional, Set, Union
from datetime import datetime
from pathlib import Path
from sqlalchemy.ext.asyncio import AsyncSession
import asyncio
import json
import uuid
import logging

from core.config import settings
from core.exceptions import (
    ImportPipelineError,
    ImportRunError,
    InvalidRunStateError,
    DuplicateDecisionError,
    LoadError,
)
from ingestion.dedupe import DuplicateDetector, merge_clinic_fields, changed_fields
from ingestion.enrichment.geocoder import Geocoder
from ingestion.enrichment.website_verifier import WebsiteVerifier
from ingestion.extractors.factory import get_record_source
from ingestion.loaders.clinic_store import ClinicStore, BatchWriter
from ingestion.loaders.import_run_store import ImportRunStore
from ingestion.transformers.record_processor import ClinicRecordProcessor
from ingestion.transformers.slugs import create_slug, ensure_unique_slug
from models.base import DuplicateAction, DuplicatePolicy, ImportRunStatus
from models.import_run import ImportRun
from schemas.clinic import ClinicCreate
from schemas.imports import (
    DuplicateCandidate,
    DuplicateDecision,
    DuplicateMatch,
    ImportFailure,
    ImportOptions,
    ImportSummary,
)

logger = logging.getLogger(__name__)

CANCELLED_REASON = "import cancelled"


def summary_from_run(run: ImportRun) -> ImportSummary:
    """ImportSummary view of a persisted run"""
    options = run.options or {}
    return ImportSummary(
        run_id=str(run.run_id),
        status=ImportRunStatus(run.status),
        total=run.total,
        success=run.success,
        failed=run.failed,
        created=run.created,
        merged=run.merged,
        skipped=run.skipped,
        failures=[ImportFailure(**f) for f in (run.failures or [])],
        pending_duplicates=[DuplicateCandidate.model_validate(c) for c in (run.pending_duplicates or [])],
        failure_log_path=run.failure_log_path,
        dry_run=bool(options.get("dry_run", False)),
    )


class _RunProgress:
    """Mutable counters and buffers of one run (or one resume)"""

    def __init__(self, run_id: str, total: int, options: ImportOptions, writer: BatchWriter):
        self.run_id = run_id
        self.total = total
        self.options = options
        self.writer = writer
        self.created = 0
        self.merged = 0
        self.skipped = 0
        self.failures: List[ImportFailure] = []
        self.pending: List[DuplicateCandidate] = []
        # Slugs of clinics created by this run; never matched as duplicates
        self.created_slugs: Set[str] = set()
        # Merged state of clinics updated by this run, by clinic id
        self.merged_state: Dict[int, Dict[str, Any]] = {}
        self.cancelled = False
        # Counted creates/merges whose writes are still in the open batch
        self.uncommitted_created = 0
        self.uncommitted_merged = 0

    @property
    def success(self) -> int:
        return self.created + self.merged + self.skipped

    async def commit(self):
        await self.writer.commit()
        self.uncommitted_created = 0
        self.uncommitted_merged = 0


class ClinicImporter:
    """
    Batch importer for clinic records.

    Responsibilities:
    - Drive every record through ClinicRecordProcessor, in order
    - Detect duplicates and apply the duplicate policy
    - Flush writes whenever the batch reaches its ceiling, and at the end
    - Record the run, its counters and its failures
    - Pause on deferred duplicates and resume once decisions arrive

    Usage:
        importer = ClinicImporter(session)
        summary = await importer.import_file("clinics.csv", source="csv-upload", actor="admin@example.com")
    """

    def __init__(
        self,
        db_session: AsyncSession,
        geocoder=None,
        verifier=None,
        options: Optional[ImportOptions] = None,
        clock=datetime.utcnow,
    ):
        self.db = db_session
        self.store = ClinicStore(db_session)
        self.runs = ImportRunStore(db_session)
        self.geocoder = geocoder or Geocoder.from_settings()
        self.verifier = verifier or WebsiteVerifier()
        self.options = options or ImportOptions()
        self.clock = clock
        self.processor = ClinicRecordProcessor(self.store, self.geocoder, self.verifier, clock=clock)
        self.detector = DuplicateDetector(self.store)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def import_file(
        self,
        file_path: str,
        source: Optional[str] = None,
        actor: Optional[str] = None,
        content: Optional[bytes] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ImportSummary:
        """
        Parse a CSV/JSON file and import it.

        Raises:
            ExtractionError: Malformed or unsupported file; no run is created
        """
        records = get_record_source(file_path, content).read_records()
        return await self.import_clinics(
            records,
            source=source,
            actor=actor,
            file_name=Path(file_path).name,
            cancel_event=cancel_event,
        )

    async def import_clinics(
        self,
        records: List[Dict[str, Any]],
        source: Optional[str] = None,
        actor: Optional[str] = None,
        file_name: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ImportSummary:
        """
        Import already-parsed records.

        Returns:
            ImportSummary; status is complete, cancelled, or
            duplicates_pending when operator decisions are needed

        Raises:
            LoadError: A store write failed. Batches committed before the
                failure stay committed; the run is marked failed.
        """
        source = source or settings.DEFAULT_IMPORT_SOURCE
        actor = actor or settings.DEFAULT_ACTOR

        if self.options.dry_run:
            return await self._dry_run(records, source, cancel_event)

        run = await self.runs.create(
            source=source,
            actor=actor,
            file_name=file_name,
            options=self.options.model_dump(mode="json"),
        )
        return await self._execute(run, records, self.options, cancel_event)

    async def queue(
        self,
        records: List[Dict[str, Any]],
        source: Optional[str] = None,
        actor: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> ImportRun:
        """Persist records as a created run for the scheduler to execute"""
        return await self.runs.create(
            source=source or settings.DEFAULT_IMPORT_SOURCE,
            actor=actor or settings.DEFAULT_ACTOR,
            file_name=file_name,
            options=self.options.model_dump(mode="json"),
            raw_records=records,
        )

    async def run_queued(self, run_id: Union[str, uuid.UUID], cancel_event: Optional[asyncio.Event] = None) -> ImportSummary:
        """Execute a run queued with queue()"""
        run = await self.runs.get(run_id)
        if ImportRunStatus(run.status) != ImportRunStatus.CREATED:
            raise InvalidRunStateError(
                f"Import run {run.run_id} is not queued",
                context={"run_id": str(run.run_id), "current_status": ImportRunStatus(run.status).value}
            )
        options = ImportOptions(**(run.options or {}))
        return await self._execute(run, list(run.raw_records or []), options, cancel_event)

    async def resume(
        self,
        run_id: Union[str, uuid.UUID],
        decisions: Union[Dict[str, DuplicateAction], List[DuplicateDecision]],
        actor: Optional[str] = None,
    ) -> ImportSummary:
        """
        Apply operator decisions to a paused run and finalize it.

        Args:
            run_id: Run in duplicates_pending
            decisions: candidate_id -> merge | create | skip, one per candidate
            actor: Who decided; recorded as last_updated_by

        Raises:
            InvalidRunStateError: Run is not awaiting decisions
            DuplicateDecisionError: Unknown or undecided candidates
        """
        run = await self.runs.get(run_id)
        if ImportRunStatus(run.status) != ImportRunStatus.DUPLICATES_PENDING:
            raise InvalidRunStateError(
                f"Import run {run.run_id} is not awaiting duplicate decisions",
                context={
                    "run_id": str(run.run_id),
                    "current_status": ImportRunStatus(run.status).value,
                    "requested_status": ImportRunStatus.FINALIZING.value,
                }
            )

        actions = self._decision_map(decisions)
        candidates = [DuplicateCandidate.model_validate(c) for c in (run.pending_duplicates or [])]
        pending_ids = {c.candidate_id for c in candidates}
        unknown = sorted(set(actions) - pending_ids)
        undecided = sorted(pending_ids - set(actions))
        if unknown or undecided:
            raise DuplicateDecisionError(
                "Decisions do not match the pending duplicates",
                context={
                    "run_id": str(run.run_id),
                    "unknown_candidates": unknown,
                    "undecided_candidates": undecided,
                }
            )

        actor = actor or run.actor
        options = ImportOptions(**(run.options or {}))
        progress = _RunProgress(
            str(run.run_id),
            run.total,
            options,
            self.store.batch(options.batch_size, actor=actor),
        )
        progress.created, progress.merged, progress.skipped = run.created, run.merged, run.skipped
        progress.failures = [ImportFailure(**f) for f in (run.failures or [])]

        run.transition(ImportRunStatus.FINALIZING)
        await self.runs.save(run)
        logger.info(f"Resuming import run {run.run_id}: {len(candidates)} duplicate decisions from {actor}")

        try:
            for candidate in candidates:
                await self._apply_action(
                    progress,
                    candidate.clinic,
                    candidate.match,
                    actions[candidate.candidate_id],
                    reassign_slug=True,
                )
            await progress.commit()

        except LoadError as e:
            await self._fail_run(run, progress, e)
            raise

        except Exception as e:
            logger.exception("Unexpected error while resuming import run")
            await self._fail_run(run, progress, e)
            raise ImportRunError(
                "Unexpected error while resuming import run",
                context={"run_id": str(run.run_id)},
                original_exception=e
            )

        run.pending_duplicates = []
        return await self._complete(run, progress)

    # ------------------------------------------------------------------
    # Run execution
    # ------------------------------------------------------------------

    async def _execute(
        self,
        run: ImportRun,
        records: List[Dict[str, Any]],
        options: ImportOptions,
        cancel_event: Optional[asyncio.Event],
    ) -> ImportSummary:
        run.transition(ImportRunStatus.PROCESSING)
        run.total = len(records)
        await self.runs.save(run)

        progress = _RunProgress(
            str(run.run_id),
            len(records),
            options,
            self.store.batch(options.batch_size, actor=run.actor),
        )
        logger.info(f"Starting import run {run.run_id}: {len(records)} records from {run.source}")

        try:
            await self._process_records(progress, records, run.source, cancel_event)
            await progress.commit()

        except LoadError as e:
            await self._fail_run(run, progress, e)
            raise

        except Exception as e:
            logger.exception("Unexpected error in import run")
            await self._fail_run(run, progress, e)
            raise ImportRunError(
                "Unexpected error in import run",
                context={
                    "run_id": str(run.run_id),
                    "records_committed": progress.writer.operations_committed,
                },
                original_exception=e
            )

        if progress.cancelled:
            return await self._cancel(run, progress)

        if progress.pending:
            return await self._pause(run, progress)

        run.transition(ImportRunStatus.FINALIZING)
        return await self._complete(run, progress)

    async def _process_records(
        self,
        progress: _RunProgress,
        records: List[Dict[str, Any]],
        source: str,
        cancel_event: Optional[asyncio.Event],
    ):
        total = len(records)

        for index, raw in enumerate(records, start=1):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"Import run {progress.run_id} cancelled at record {index}/{total}")
                progress.cancelled = True
                for remaining in records[index - 1:]:
                    progress.failures.append(ImportFailure(record=remaining, error=CANCELLED_REASON))
                # Processed duplicates that never got a decision
                for candidate in progress.pending:
                    progress.failures.append(ImportFailure(record=candidate.record, error=CANCELLED_REASON))
                progress.pending = []
                return

            result = await self.processor.process(raw, source)

            if not result.success:
                failure = ImportFailure(record=raw, error=result.error)
                progress.failures.append(failure)
                logger.error(
                    f"[{index}/{total}] Failed: {result.error}",
                    extra={"error_context": {"run_id": progress.run_id, "record_index": index, "error": result.error}}
                )
                continue

            clinic = result.data
            match = None
            if progress.options.check_duplicates:
                match = await self.detector.find_duplicate(clinic, exclude_slugs=progress.created_slugs)

            if not self.detector.is_flagged(match):
                await self._create(progress, clinic)
            elif progress.options.duplicate_policy == DuplicatePolicy.DEFER:
                self.store.release_slug(clinic.slug)
                progress.pending.append(DuplicateCandidate(
                    candidate_id=str(uuid.uuid4()),
                    record=raw,
                    clinic=clinic,
                    match=match,
                ))
            else:
                await self._apply_action(progress, clinic, match, DuplicateAction(progress.options.duplicate_policy.value))

            logger.info(f"[{index}/{total}] Processed: {clinic.name} ({clinic.slug})")

    async def _apply_action(
        self,
        progress: _RunProgress,
        clinic: ClinicCreate,
        match: DuplicateMatch,
        action: DuplicateAction,
        reassign_slug: bool = False,
    ):
        if action == DuplicateAction.CREATE:
            # Paused candidates released their slug; take a fresh one
            if reassign_slug or not self.store.is_reserved(clinic.slug):
                slug = await ensure_unique_slug(self.store, create_slug(clinic.name, clinic.city, clinic.state))
                self.store.reserve_slug(slug)
                clinic = clinic.model_copy(update={"slug": slug})
            await self._create(progress, clinic)

        elif action == DuplicateAction.MERGE:
            self.store.release_slug(clinic.slug)
            await self._merge(progress, clinic, match)

        else:
            self.store.release_slug(clinic.slug)
            progress.skipped += 1
            logger.info(f"Skipped duplicate {clinic.name} (matches clinic {match.clinic_id})")

    async def _create(self, progress: _RunProgress, clinic: ClinicCreate):
        if await self._queue(progress, lambda writer: writer.create(clinic.to_record())):
            progress.uncommitted_created += 1
        progress.created_slugs.add(clinic.slug)
        progress.created += 1
        await self._commit_if_full(progress)

    async def _merge(self, progress: _RunProgress, clinic: ClinicCreate, match: DuplicateMatch):
        existing = progress.merged_state.get(match.clinic_id)
        if existing is None:
            row = await self.store.get(match.clinic_id)
            if row is None:
                logger.warning(f"Clinic {match.clinic_id} no longer exists; creating {clinic.name} instead")
                await self._apply_action(progress, clinic, match, DuplicateAction.CREATE, reassign_slug=True)
                return
            existing = row.to_dict()

        merged = merge_clinic_fields(existing, clinic.to_record())
        changes = changed_fields(existing, merged)
        progress.merged_state[match.clinic_id] = merged

        if changes and await self._queue(progress, lambda writer: writer.update(match.clinic_id, changes)):
            progress.uncommitted_merged += 1
        progress.merged += 1
        logger.info(f"Merged {clinic.name} into clinic {match.clinic_id} ({len(changes)} fields changed)")
        await self._commit_if_full(progress)

    async def _queue(self, progress: _RunProgress, operation) -> bool:
        """Queue one write, committing first if the batch is at its ceiling. False on a dry run."""
        if progress.options.dry_run:
            return False
        if progress.writer.is_full:
            await progress.commit()
        operation(progress.writer)
        return True

    async def _commit_if_full(self, progress: _RunProgress):
        if progress.writer.is_full:
            await progress.commit()

    # ------------------------------------------------------------------
    # Run outcomes
    # ------------------------------------------------------------------

    def _record_counters(self, run: ImportRun, progress: _RunProgress):
        run.success = progress.success
        run.failed = len(progress.failures)
        run.created = progress.created
        run.merged = progress.merged
        run.skipped = progress.skipped
        run.failures = [f.model_dump(mode="json") for f in progress.failures]
        if progress.failures:
            run.failure_log_path = self._write_failure_log(progress)

    def _finish_timing(self, run: ImportRun):
        run.completed_at = datetime.utcnow()
        run.duration_seconds = (run.completed_at - run.started_at).total_seconds()

    async def _complete(self, run: ImportRun, progress: _RunProgress) -> ImportSummary:
        self._record_counters(run, progress)
        run.transition(ImportRunStatus.COMPLETE)
        self._finish_timing(run)
        await self.runs.save(run)

        logger.info(
            f"Import run {run.run_id} complete - Total: {run.total}, Success: {run.success} "
            f"(created {run.created}, merged {run.merged}, skipped {run.skipped}), Failed: {run.failed}"
        )
        return summary_from_run(run)

    async def _pause(self, run: ImportRun, progress: _RunProgress) -> ImportSummary:
        self._record_counters(run, progress)
        run.pending_duplicates = [c.model_dump(mode="json") for c in progress.pending]
        run.transition(ImportRunStatus.DUPLICATES_PENDING)
        await self.runs.save(run)

        logger.info(
            f"Import run {run.run_id} paused: {len(progress.pending)} possible duplicates await decisions"
        )
        return summary_from_run(run)

    async def _cancel(self, run: ImportRun, progress: _RunProgress) -> ImportSummary:
        self._record_counters(run, progress)
        run.transition(ImportRunStatus.CANCELLED)
        run.error_message = CANCELLED_REASON
        self._finish_timing(run)
        await self.runs.save(run)

        logger.warning(
            f"Import run {run.run_id} cancelled - Success: {run.success}, Failed: {run.failed}"
        )
        return summary_from_run(run)

    async def _fail_run(self, run: ImportRun, progress: _RunProgress, error: Exception):
        """Mark the run failed; batches committed earlier stay committed"""
        if isinstance(error, ImportPipelineError):
            logger.error(f"Import run failed: {error.message}", extra={"error_context": error.to_dict()})
        else:
            logger.error(f"Import run failed: {error}")

        await self.db.rollback()
        await self.db.refresh(run)

        if run.is_terminal:
            return

        committed = progress.writer.operations_committed
        run.transition(ImportRunStatus.FAILED)
        # Writes of the open batch were rolled back
        run.created = progress.created - progress.uncommitted_created
        run.merged = progress.merged - progress.uncommitted_merged
        run.skipped = progress.skipped
        run.success = run.created + run.merged + run.skipped
        run.failed = len(progress.failures)
        run.failures = [f.model_dump(mode="json") for f in progress.failures]
        run.error_message = (
            f"{error.message if isinstance(error, ImportPipelineError) else error} "
            f"({committed} clinic writes were committed before the failure)"
        )
        self._finish_timing(run)
        if progress.failures:
            run.failure_log_path = self._write_failure_log(progress)
        await self.runs.save(run)

    async def _dry_run(
        self,
        records: List[Dict[str, Any]],
        source: str,
        cancel_event: Optional[asyncio.Event],
    ) -> ImportSummary:
        """Process, tag and check duplicates without writing anything"""
        run_id = str(uuid.uuid4())
        progress = _RunProgress(run_id, len(records), self.options, self.store.batch(self.options.batch_size))
        logger.info(f"Dry run {run_id}: {len(records)} records from {source}")

        await self._process_records(progress, records, source, cancel_event)

        if progress.cancelled:
            status = ImportRunStatus.CANCELLED
        elif progress.pending:
            status = ImportRunStatus.DUPLICATES_PENDING
        else:
            status = ImportRunStatus.COMPLETE

        return ImportSummary(
            run_id=run_id,
            status=status,
            total=len(records),
            success=progress.success,
            failed=len(progress.failures),
            created=progress.created,
            merged=progress.merged,
            skipped=progress.skipped,
            failures=progress.failures,
            pending_duplicates=progress.pending,
            failure_log_path=self._write_failure_log(progress) if progress.failures else None,
            dry_run=True,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _decision_map(decisions) -> Dict[str, DuplicateAction]:
        if isinstance(decisions, dict):
            return {str(k): DuplicateAction(v) for k, v in decisions.items()}
        return {d.candidate_id: DuplicateAction(d.action) for d in decisions}

    def _write_failure_log(self, progress: _RunProgress) -> Optional[str]:
        """Write import_failures_<run_id>.json; returns its path"""
        log_dir = Path(progress.options.failure_log_dir)
        path = log_dir / f"import_failures_{progress.run_id}.json"
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(
                    [failure.model_dump(mode="json") for failure in progress.failures],
                    f,
                    indent=2,
                    default=str,
                )
        except OSError as e:
            logger.error(f"Could not write failure log {path}: {e}")
            return None

        logger.info(f"Wrote {len(progress.failures)} failures to {path}")
        return str(path)
