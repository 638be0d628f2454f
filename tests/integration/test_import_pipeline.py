"""
Integration tests for the batch importer against an in-memory database
"""

import asyncio
import json
import pytest
from pathlib import Path
from unittest.mock import patch
from sqlalchemy import select, func
from core.exceptions import BatchCommitError, InvalidRunStateError, JSONExtractionError, UnsupportedFormatError
from ingestion.loaders.clinic_store import BatchWriter
from ingestion.loaders.import_run_store import ImportRunStore
from models.base import ImportRunStatus, QualityTag
from models.clinic import Clinic
from models.import_run import ImportRun


async def load_clinics(session):
    session.expire_all()
    result = await session.execute(select(Clinic).order_by(Clinic.id))
    return list(result.scalars().all())


async def count_runs(session):
    return (await session.execute(select(func.count(ImportRun.id)))).scalar_one()


def numbered_records(count, city="Austin"):
    return [
        {
            "name": f"Clinic Number {i}",
            "address": f"{i} Main St",
            "city": city,
            "state": "TX",
            "zip": "78701",
            "phone": f"512555{i:04d}",
            "website": f"clinic{i}.example.com",
            "services": "TRT",
        }
        for i in range(1, count + 1)
    ]


@pytest.mark.asyncio
async def test_three_row_csv_import(db_session, make_importer, sample_csv):
    """Complete row, row missing state, row without website"""
    importer = make_importer()

    summary = await importer.import_file(
        "clinics.csv", source="csv-upload", actor="admin@example.com", content=sample_csv
    )

    assert summary.status == ImportRunStatus.COMPLETE
    assert (summary.total, summary.success, summary.failed) == (3, 2, 1)
    assert summary.created == 2
    assert summary.failures[0].record["name"] == "Elite Male Medical"
    assert "state" in summary.failures[0].error

    first, third = await load_clinics(db_session)
    assert first.name == "Premium Men's Health Clinic"
    assert first.lat is not None and first.lng is not None
    assert first.tags == [QualityTag.WEBSITE_OK.value]
    assert first.validation_status["websiteOK"] is True
    assert first.import_source == "csv-upload"
    assert first.last_updated_by == "admin@example.com"

    assert third.name == "Total Men's Health"
    assert third.tags == [QualityTag.MISSING_WEBSITE.value]
    assert third.lat is not None
    assert third.phone == "(323) 555-4321"


@pytest.mark.asyncio
async def test_run_row_records_outcome(db_session, make_importer, sample_csv):
    summary = await make_importer().import_file("clinics.csv", source="csv-upload", actor="admin", content=sample_csv)

    run = await ImportRunStore(db_session).get(summary.run_id)
    assert ImportRunStatus(run.status) == ImportRunStatus.COMPLETE
    assert run.file_name == "clinics.csv"
    assert (run.total, run.success, run.failed, run.created) == (3, 2, 1, 2)
    assert run.failures[0]["error"] == "Missing required fields: state"
    assert run.completed_at is not None
    assert run.duration_seconds >= 0


@pytest.mark.asyncio
async def test_failure_log_written(make_importer, sample_csv, import_options):
    summary = await make_importer().import_file("clinics.csv", content=sample_csv)

    path = Path(summary.failure_log_path)
    assert path.parent == Path(import_options.failure_log_dir)
    assert path.name == f"import_failures_{summary.run_id}.json"

    entries = json.loads(path.read_text())
    assert len(entries) == 1
    assert entries[0]["record"]["name"] == "Elite Male Medical"
    assert entries[0]["error"] == "Missing required fields: state"


@pytest.mark.asyncio
async def test_no_failure_log_without_failures(make_importer):
    summary = await make_importer().import_clinics(numbered_records(1))
    assert summary.failure_log_path is None


@pytest.mark.asyncio
async def test_identical_records_get_distinct_slugs(db_session, make_importer, clinic_record):
    summary = await make_importer().import_clinics([dict(clinic_record), dict(clinic_record), dict(clinic_record)])

    assert summary.created == 3
    slugs = [c.slug for c in await load_clinics(db_session)]
    assert slugs == [
        "premium-mens-health-clinic-austin-tx",
        "premium-mens-health-clinic-austin-tx-1",
        "premium-mens-health-clinic-austin-tx-2",
    ]


@pytest.mark.asyncio
async def test_slugs_unique_across_runs(db_session, make_importer, clinic_record):
    await make_importer(check_duplicates=False).import_clinics([clinic_record])
    await make_importer(check_duplicates=False).import_clinics([clinic_record])

    slugs = [c.slug for c in await load_clinics(db_session)]
    assert slugs == ["premium-mens-health-clinic-austin-tx", "premium-mens-health-clinic-austin-tx-1"]


@pytest.mark.asyncio
async def test_empty_input(db_session, make_importer):
    summary = await make_importer().import_clinics([])

    assert summary.status == ImportRunStatus.COMPLETE
    assert (summary.total, summary.success, summary.failed) == (0, 0, 0)
    assert await load_clinics(db_session) == []


@pytest.mark.asyncio
async def test_all_records_failing(make_importer):
    summary = await make_importer().import_clinics([{"name": "A"}, {"city": "Austin"}, {}])

    assert summary.status == ImportRunStatus.COMPLETE
    assert (summary.total, summary.success, summary.failed) == (3, 0, 3)


@pytest.mark.asyncio
async def test_writes_in_bounded_batches(db_session, make_importer):
    original_commit = BatchWriter.commit
    batch_sizes = []

    async def recording_commit(self):
        batch_sizes.append(len(self))
        return await original_commit(self)

    with patch.object(BatchWriter, "commit", recording_commit):
        summary = await make_importer(batch_size=2).import_clinics(numbered_records(5))

    assert summary.created == 5
    assert batch_sizes == [2, 2, 1]
    assert len(await load_clinics(db_session)) == 5


@pytest.mark.asyncio
async def test_commit_failure_keeps_earlier_batches(db_session, make_importer):
    original_commit = BatchWriter.commit
    calls = []

    async def flaky_commit(self):
        calls.append(len(self))
        if len(calls) == 2:
            await self.db.rollback()
            self._creates = []
            raise BatchCommitError(
                "Failed to commit clinic batch",
                context={"batch_number": 2, "records_committed": self.operations_committed},
            )
        return await original_commit(self)

    with patch.object(BatchWriter, "commit", flaky_commit):
        with pytest.raises(BatchCommitError):
            await make_importer(batch_size=2).import_clinics(numbered_records(5), actor="admin")

    assert len(await load_clinics(db_session)) == 2

    run = (await ImportRunStore(db_session).recent(limit=1))[0]
    assert ImportRunStatus(run.status) == ImportRunStatus.FAILED
    assert "2 clinic writes were committed" in run.error_message
    assert (run.total, run.success, run.created, run.failed) == (5, 2, 2, 0)
    assert run.completed_at is not None


@pytest.mark.asyncio
async def test_cancel_between_records(db_session, make_importer, geocoder):
    cancel = asyncio.Event()
    original = geocoder.geocode_address

    async def geocode_then_cancel(*args):
        cancel.set()
        return await original(*args)

    geocoder.geocode_address = geocode_then_cancel

    summary = await make_importer().import_clinics(numbered_records(3), cancel_event=cancel)

    assert summary.status == ImportRunStatus.CANCELLED
    assert (summary.total, summary.success, summary.failed) == (3, 1, 2)
    assert {f.error for f in summary.failures} == {"import cancelled"}
    assert len(await load_clinics(db_session)) == 1

    run = await ImportRunStore(db_session).get(summary.run_id)
    assert ImportRunStatus(run.status) == ImportRunStatus.CANCELLED


@pytest.mark.asyncio
async def test_dry_run_writes_nothing(db_session, make_importer, sample_csv):
    summary = await make_importer(dry_run=True).import_file("clinics.csv", content=sample_csv)

    assert summary.dry_run is True
    assert (summary.total, summary.success, summary.failed) == (3, 2, 1)
    assert summary.created == 2
    assert await load_clinics(db_session) == []
    assert await count_runs(db_session) == 0
    assert Path(summary.failure_log_path).exists()


@pytest.mark.asyncio
async def test_parse_failure_creates_no_run(db_session, make_importer):
    importer = make_importer()

    with pytest.raises(JSONExtractionError):
        await importer.import_file("clinics.json", content=b"{not json")
    with pytest.raises(UnsupportedFormatError):
        await importer.import_file("clinics.xml", content=b"<clinics/>")

    assert await count_runs(db_session) == 0


@pytest.mark.asyncio
async def test_import_json_file_from_disk(db_session, make_importer, tmp_path):
    path = tmp_path / "clinics.json"
    path.write_text(json.dumps({"clinics": [
        {"clinic_name": "Elite Male Medical", "street_address": "456 Broadway Ave", "city": "New York",
         "state": "NY", "zipcode": "10013", "phone_number": "212-555-6789", "url": "elitemalemedical.com",
         "services": ["TRT", "Peptide Therapy"], "package": "premium"},
    ]}))

    summary = await make_importer().import_file(str(path), source="json-upload")

    assert summary.created == 1
    clinic = (await load_clinics(db_session))[0]
    assert clinic.website == "https://elitemalemedical.com/"
    assert clinic.services == ["TRT", "Peptide Therapy"]
    assert clinic.package.value == "premium"


@pytest.mark.asyncio
async def test_queued_run_executes_once(db_session, make_importer):
    importer = make_importer()
    run = await importer.queue(numbered_records(2), source="api", actor="admin", file_name="upload.csv")
    assert ImportRunStatus(run.status) == ImportRunStatus.CREATED
    assert run.total == 2

    summary = await importer.run_queued(str(run.run_id))

    assert summary.status == ImportRunStatus.COMPLETE
    assert summary.created == 2
    with pytest.raises(InvalidRunStateError):
        await importer.run_queued(run.run_id)
