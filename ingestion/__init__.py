"""
Clinic import pipeline components.

Modules:
    base: Abstract record source with header canonicalization
    dedupe: Duplicate detection and field merging
    runner: ClinicImporter, the batch importer with resumable runs
    scheduler: APScheduler job executing imports queued over the API

Subpackages:
    extractors: CSV and JSON record sources
    transformers: Normalizer, slugs, quality tags and the record processor
    enrichment: Geocoder adapter and website verifier (httpx)
    loaders: Clinic store with batched writes, import run persistence

Architecture:
    Each record goes through a fixed sequence:

    1. Validate - name, city and state present (the only hard failure)
    2. Normalize - phone, website, services
    3. Slug - deterministic base slug, made unique against the store
    4. Enrich - geocode and website check; misses become quality tags
    5. Dedupe - compare against existing clinics; defer, merge, create or skip
    6. Load - batched writes under the store's per-batch ceiling

    Records are processed one at a time, never concurrently.

Usage:
    from ingestion.runner import ClinicImporter

    async with async_session_maker() as session:
        importer = ClinicImporter(session)
        summary = await importer.import_file("clinics.csv", source="csv-upload", actor="admin")

    print(f"{summary.success}/{summary.total} imported, {summary.failed} failed")

Error Handling:
    Parse failures raise ExtractionError before a run is created.
    Store failures raise LoadError; batches committed earlier are kept and
    the run is marked failed. Per-record problems never raise.
"""

__all__ = [
    "RecordSource",
    "ClinicImporter",
    "ImportScheduler",
    "DuplicateDetector",
    "merge_clinic_fields",
]
