"""
Command-line clinic importer.

Usage:
    python scripts/import_clinics.py import clinics.csv --source csv-upload --actor admin@example.com
    python scripts/import_clinics.py import clinics.json --duplicate-policy merge --dry-run
    python scripts/import_clinics.py resume <run_id> decisions.json --actor admin@example.com
    python scripts/import_clinics.py create-sample --output sample-clinics.csv

decisions.json maps candidate ids to merge, create or skip:
    {"4f1c...": "merge", "9a2e...": "skip"}
"""

import argparse
import asyncio
import json
import logging
import os
import sys

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

import pandas as pd

from core.config import settings
from core.database import async_session_maker, engine
from core.exceptions import ImportPipelineError
from core.logging import setup_logging
from ingestion.runner import ClinicImporter
from models.base import DuplicatePolicy
from schemas.imports import ImportOptions, ImportSummary

logger = logging.getLogger(__name__)

SAMPLE_CLINICS = [
    {
        "name": "Premium Men's Health Clinic",
        "address": "123 Main St",
        "city": "Austin",
        "state": "TX",
        "zip": "78701",
        "country": "USA",
        "phone": "(512) 555-1234",
        "website": "https://premium-mens-health.com",
        "services": "TRT,ED Treatment,Weight Management",
    },
    {
        "name": "Elite Male Medical",
        "address": "456 Broadway Ave",
        "city": "New York",
        "state": "NY",
        "zip": "10013",
        "country": "USA",
        "phone": "212-555-6789",
        "website": "elitemalemedical.com",
        "services": "TRT,Peptide Therapy,Sexual Health",
    },
    {
        "name": "Total Men's Health",
        "address": "789 Wilshire Blvd",
        "city": "Los Angeles",
        "state": "CA",
        "zip": "90017",
        "country": "USA",
        "phone": "323-555-4321",
        "website": "https://totalmensclinic.com",
        "services": "TRT,Hair Loss,ED Treatment,Hormone Optimization",
    },
]


def create_sample_csv(output_path: str) -> str:
    """Write the three-clinic sample file"""
    pd.DataFrame(SAMPLE_CLINICS).to_csv(output_path, index=False)
    logger.info(f"Created sample CSV file at {output_path}")
    return output_path


def print_summary(summary: ImportSummary):
    print("\nImport summary")
    print(f"  Run:      {summary.run_id}{' (dry run)' if summary.dry_run else ''}")
    print(f"  Status:   {summary.status.value}")
    print(f"  Total:    {summary.total}")
    print(f"  Success:  {summary.success} (created {summary.created}, merged {summary.merged}, skipped {summary.skipped})")
    print(f"  Failed:   {summary.failed}")

    if summary.pending_duplicates:
        print(f"\n{len(summary.pending_duplicates)} possible duplicates await decisions:")
        for candidate in summary.pending_duplicates:
            print(
                f"  {candidate.candidate_id}: {candidate.clinic.name} ~ "
                f"clinic {candidate.match.clinic_id} ({candidate.match.reason}, "
                f"confidence {candidate.match.confidence:.2f})"
            )

    if summary.failure_log_path:
        print(f"\nFailed records written to {summary.failure_log_path}")


async def run_import(args) -> ImportSummary:
    options = ImportOptions(
        check_duplicates=not args.no_check_duplicates,
        duplicate_policy=DuplicatePolicy(args.duplicate_policy),
        batch_size=args.batch_size,
        dry_run=args.dry_run,
    )
    async with async_session_maker() as session:
        importer = ClinicImporter(session, options=options)
        return await importer.import_file(args.file, source=args.source, actor=args.actor)


async def run_resume(args) -> ImportSummary:
    with open(args.decisions, encoding="utf-8") as f:
        decisions = json.load(f)

    async with async_session_maker() as session:
        return await ClinicImporter(session).resume(args.run_id, decisions, actor=args.actor)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Import clinics from CSV or JSON")
    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="Import clinics from a CSV or JSON file")
    import_parser.add_argument("file", help="Path to the .csv or .json file")
    import_parser.add_argument("--source", default=settings.DEFAULT_IMPORT_SOURCE, help="Import source label")
    import_parser.add_argument("--actor", default=settings.DEFAULT_ACTOR, help="Who runs the import")
    import_parser.add_argument("--batch-size", type=int, default=settings.IMPORT_BATCH_SIZE, help="Writes per batch (max 500)")
    import_parser.add_argument("--no-check-duplicates", action="store_true", help="Skip duplicate detection")
    import_parser.add_argument(
        "--duplicate-policy",
        choices=[p.value for p in DuplicatePolicy],
        default=DuplicatePolicy.DEFER.value,
        help="What to do with possible duplicates (defer pauses the run for review)",
    )
    import_parser.add_argument("--dry-run", action="store_true", help="Process and report without writing")

    resume_parser = subparsers.add_parser("resume", help="Apply duplicate decisions to a paused run")
    resume_parser.add_argument("run_id", help="Import run id")
    resume_parser.add_argument("decisions", help="JSON file mapping candidate ids to merge/create/skip")
    resume_parser.add_argument("--actor", default=None, help="Who made the decisions")

    sample_parser = subparsers.add_parser("create-sample", help="Create a sample CSV file with test data")
    sample_parser.add_argument("-o", "--output", default="./sample-clinics.csv", help="Output file path")

    return parser


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "create-sample":
        create_sample_csv(args.output)
        return 0

    try:
        if args.command == "import":
            summary = await run_import(args)
        else:
            summary = await run_resume(args)
    except ImportPipelineError as e:
        logger.error(f"Import failed: {e}", extra={"error_context": e.to_dict()})
        return 1
    finally:
        await engine.dispose()

    print_summary(summary)
    return 0


if __name__ == "__main__":
    setup_logging()
    sys.exit(asyncio.run(main()))
