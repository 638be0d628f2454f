"""
Shared plumbing for the clinic import pipeline.

Modules:
    config: Settings loaded from the environment and .env (pydantic-settings)
    database: Async engine, session factory and table creation
    exceptions: Error hierarchy; per-record problems never raise, run-level ones do
    logging: Root logger setup with error-context formatting

Usage:
    from core.config import settings
    from core.database import async_session_maker, create_tables
    from core.exceptions import BatchCommitError, DuplicateDecisionError
    from core.logging import setup_logging

    setup_logging()
    await create_tables()
    async with async_session_maker() as session:
        ...
"""

__all__ = [
    "settings",
    "get_session",
    "setup_logging",
    # Exceptions
    "ImportPipelineError",
    "ExtractionError",
    "CSVExtractionError",
    "JSONExtractionError",
    "UnsupportedFormatError",
    "EnrichmentError",
    "GeocodingError",
    "WebsiteVerificationError",
    "UnsafeURLError",
    "LoadError",
    "DatabaseError",
    "BatchCommitError",
    "ImportRunError",
    "InvalidRunStateError",
    "ImportRunNotFoundError",
    "DuplicateDecisionError",
    "RetryableError",
    "NonRetryableError",
    "NetworkError",
    "RateLimitError",
    "ProviderAuthenticationError",
]
