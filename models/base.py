from sqlalchemy import BigInteger, Integer, JSON, Enum
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntegerPK = BigInteger().with_variant(Integer(), "sqlite")


# ============================================================================
# ENUMS
# ============================================================================

class ClinicPackage(str, enum.Enum):
    """Listing package / tier"""
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"


class ClinicStatus(str, enum.Enum):
    """Listing lifecycle status"""
    ACTIVE = "active"
    TRIAL = "trial"
    PAUSED = "paused"
    CANCELED = "canceled"


class ImportRunStatus(str, enum.Enum):
    """Import run state machine"""
    CREATED = "created"
    PROCESSING = "processing"
    DUPLICATES_PENDING = "duplicates_pending"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DuplicateAction(str, enum.Enum):
    """Operator decision for a flagged duplicate"""
    MERGE = "merge"
    CREATE = "create"
    SKIP = "skip"


class DuplicatePolicy(str, enum.Enum):
    """How an import run treats flagged duplicates"""
    DEFER = "defer"
    MERGE = "merge"
    CREATE = "create"
    SKIP = "skip"


class QualityTag(str, enum.Enum):
    """Data quality issues, stored as plain tag strings"""
    GEO_MISMATCH = "geo-mismatch"
    MISSING_ADDRESS = "missing-address"
    WEBSITE_OK = "website-ok"
    WEBSITE_DOWN = "website-down"
    MISSING_WEBSITE = "missing-website"
    INCOMPLETE_DATA = "incomplete-data"
    MISSING_SERVICES = "missing-services"


# Allowed import run transitions
RUN_TRANSITIONS = {
    ImportRunStatus.CREATED: {ImportRunStatus.PROCESSING, ImportRunStatus.FAILED, ImportRunStatus.CANCELLED},
    ImportRunStatus.PROCESSING: {
        ImportRunStatus.DUPLICATES_PENDING,
        ImportRunStatus.FINALIZING,
        ImportRunStatus.FAILED,
        ImportRunStatus.CANCELLED,
    },
    ImportRunStatus.DUPLICATES_PENDING: {
        ImportRunStatus.FINALIZING,
        ImportRunStatus.FAILED,
        ImportRunStatus.CANCELLED,
    },
    ImportRunStatus.FINALIZING: {ImportRunStatus.COMPLETE, ImportRunStatus.FAILED},
    ImportRunStatus.COMPLETE: set(),
    ImportRunStatus.FAILED: set(),
    ImportRunStatus.CANCELLED: set(),
}


def value_enum(enum_cls):
    """SQLAlchemy Enum stored by value ("basic"), not by member name"""
    return Enum(enum_cls, values_callable=lambda members: [m.value for m in members])
