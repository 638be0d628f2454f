import logging
import asyncio
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker
from core.config import settings
from core.database import async_session_maker
from core.exceptions import ImportPipelineError
from ingestion.loaders.import_run_store import ImportRunStore
from ingestion.runner import ClinicImporter

logger = logging.getLogger(__name__)


class ImportScheduler:
    """
    Runs imports queued over the API.

    Polls every IMPORT_POLL_INTERVAL_SECONDS for runs in the created state
    and executes them one at a time, oldest first.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        importer_factory=ClinicImporter,
        interval_seconds: Optional[int] = None,
    ):
        self.scheduler = AsyncIOScheduler()
        self.session_factory = session_factory or async_session_maker
        self.importer_factory = importer_factory
        self.interval_seconds = interval_seconds or settings.IMPORT_POLL_INTERVAL_SECONDS
        self._lock = asyncio.Lock()

    async def run_queued_imports(self) -> int:
        """Job: execute every queued run. Returns the number executed."""
        if self._lock.locked():
            logger.info("Scheduler: previous import job still running")
            return 0

        executed = 0
        attempted = set()
        async with self._lock:
            while True:
                async with self.session_factory() as session:
                    run = await ImportRunStore(session).next_queued()
                    if run is None or run.run_id in attempted:
                        break
                    attempted.add(run.run_id)

                    logger.info(f"Scheduler: starting queued import run {run.run_id}")
                    try:
                        summary = await self.importer_factory(session).run_queued(run.run_id)
                        logger.info(
                            f"Scheduler: import run {run.run_id} finished as {summary.status.value}"
                        )
                    except ImportPipelineError as e:
                        logger.error(
                            f"Scheduler: import run {run.run_id} failed - {e.message}",
                            extra={"error_context": e.to_dict()}
                        )
                    executed += 1

        return executed

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_queued_imports,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id="clinic_import_job",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.start()
        logger.info(f"Import scheduler started (every {self.interval_seconds}s)")

    def stop(self):
        self.scheduler.shutdown()
        logger.info("Import scheduler stopped")
