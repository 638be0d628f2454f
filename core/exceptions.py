"""
Custom exceptions for the clinic import pipeline with structured error context.

This module provides the exception hierarchy used throughout the import
pipeline. Each exception carries context information for debugging and
for the operator-facing failure log.

Per-record problems (missing required fields, enrichment misses) are NOT
raised through the importer: they become failed ImportResults or quality
tags. Exceptions that reach the caller of a run are parse failures (raised
before any record is processed) and infrastructure failures (the run aborts,
already committed batches stay committed).

Exception Hierarchy:
    ImportPipelineError (base)
    ├── ExtractionError
    │   ├── CSVExtractionError
    │   ├── JSONExtractionError
    │   └── UnsupportedFormatError
    ├── EnrichmentError
    │   ├── GeocodingError
    │   ├── WebsiteVerificationError
    │   └── UnsafeURLError
    ├── LoadError
    │   ├── DatabaseError
    │   └── BatchCommitError
    ├── ImportRunError
    │   ├── InvalidRunStateError
    │   ├── ImportRunNotFoundError
    │   └── DuplicateDecisionError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class ImportPipelineError(Exception):
    """
    Base exception for all import pipeline errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (run id, file, batch, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(ImportPipelineError):
    """Base exception for input file parse failures. Aborts the whole run."""
    pass


class CSVExtractionError(ExtractionError):
    """
    Exception raised when a CSV input cannot be parsed.

    Context should include:
        - file_path: Path to the CSV file
    """
    pass


class JSONExtractionError(ExtractionError):
    """
    Exception raised when a JSON input cannot be parsed or has no record list.

    Context should include:
        - file_path: Path to the JSON file
    """
    pass


class UnsupportedFormatError(ExtractionError):
    """Input file extension is neither .csv nor .json."""
    pass


# ============================================================================
# Enrichment Errors
# ============================================================================

class EnrichmentError(ImportPipelineError):
    """
    Base exception for enrichment failures.

    These never reach the importer: the geocoder and the website verifier
    convert them into None / False, and the record processor into tags.
    """
    pass


class GeocodingError(EnrichmentError):
    """
    A geocoding provider failed (network, non-200, bad payload).

    Context should include:
        - provider: Provider name
        - query: The free-text address sent
        - status_code: HTTP status (if applicable)
    """
    pass


class WebsiteVerificationError(EnrichmentError):
    """The website probe could not complete."""
    pass


class UnsafeURLError(EnrichmentError):
    """
    A URL was refused before dispatch.

    Raised for non-http(s) schemes, missing hosts, and hosts resolving to
    private, loopback, link-local or reserved address ranges.
    """
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(ImportPipelineError):
    """Base exception for record store failures."""
    pass


class DatabaseError(LoadError):
    """
    Exception raised when a store read or write fails.

    Context should include:
        - operation: Type of database operation (SELECT, INSERT, UPDATE)
        - table_name: Name of the table
    """
    pass


class BatchCommitError(LoadError):
    """
    A batched write could not be committed.

    Batches committed before this one are NOT rolled back, so the run may be
    partially complete.

    Context should include:
        - batch_number: Index of the failed batch (1-based)
        - batch_operations: Number of operations in the failed batch
        - records_committed: Records durably written before the failure
    """
    pass


# ============================================================================
# Import Run Errors
# ============================================================================

class ImportRunError(ImportPipelineError):
    """Base exception for import run lifecycle problems."""
    pass


class InvalidRunStateError(ImportRunError):
    """
    An import run was asked to move to a state it cannot reach.

    Context should include:
        - run_id: Import run identifier
        - current_status: State the run is in
        - requested_status: State that was requested
    """
    pass


class ImportRunNotFoundError(ImportRunError):
    """No import run exists with the given id."""
    pass


class DuplicateDecisionError(ImportRunError):
    """
    Operator decisions do not match the pending duplicate candidates.

    Context should include:
        - unknown_candidates: Decision ids that match no pending candidate
        - undecided_candidates: Pending candidates without a decision
    """
    pass


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ImportPipelineError):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 503)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(ImportPipelineError):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Invalid request (HTTP 400)
    - Refused URLs
    """
    pass


class NetworkError(RetryableError, GeocodingError):
    """Network-related geocoding errors that may be retried."""
    pass


class RateLimitError(RetryableError, GeocodingError):
    """Rate limiting errors (HTTP 429) from a geocoding provider."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class ProviderAuthenticationError(NonRetryableError, GeocodingError):
    """The geocoding provider rejected our API key."""
    pass
