"""
SQLAlchemy ORM models for database tables.

Models:
    base: Base declarative class, portable column types and shared enums
        (ClinicPackage, ClinicStatus, ImportRunStatus, DuplicateAction,
        DuplicatePolicy, QualityTag)
    clinic: Canonical clinic listings
    import_run: Import runs, persisted as a resumable state machine

Database Schema:
    All models inherit from the Base declarative class. JSON columns use
    JSONB on PostgreSQL and plain JSON elsewhere, so the same models run
    against SQLite in tests.

Usage:
    from models.clinic import Clinic
    from models.import_run import ImportRun
    from models.base import ImportRunStatus, QualityTag

Example:
    run = ImportRun(source="manual", actor="system", file_name="clinics.csv")
    session.add(run)
    await session.commit()
"""

__all__ = [
    "Base",
    "ClinicPackage",
    "ClinicStatus",
    "ImportRunStatus",
    "DuplicateAction",
    "DuplicatePolicy",
    "QualityTag",
    "Clinic",
    "ImportRun",
]
