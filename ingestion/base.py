"""
Abstract base class for clinic record sources with header canonicalization
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional
from pathlib import Path
import logging

logger = logging.getLogger(__name__)


# Lowercased input column -> canonical field
FIELD_ALIASES: Dict[str, str] = {
    "name": "name",
    "clinic_name": "name",
    "address": "address",
    "street_address": "address",
    "city": "city",
    "state": "state",
    "zip": "zip",
    "zipcode": "zip",
    "postal_code": "zip",
    "country": "country",
    "phone": "phone",
    "phone_number": "phone",
    "website": "website",
    "url": "website",
    "email": "email",
    "services": "services",
    "tier": "tier",
    "package": "package",
    "tags": "tags",
}


def canonicalize_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map a raw record's keys onto canonical field names.

    Keys are stripped, lowercased and spaces turned into underscores before
    lookup. Unknown keys are kept as-is. When two aliases of the same field
    are present, the first non-blank value wins.
    """
    canonical: Dict[str, Any] = {}
    for key, value in record.items():
        normalized_key = str(key).strip().lower().replace(" ", "_")
        field = FIELD_ALIASES.get(normalized_key, normalized_key)

        if field in canonical and not _is_blank(canonical[field]):
            continue
        canonical[field] = value

    return canonical


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


class RecordSource(ABC):
    """
    Abstract base class for all clinic input files.

    Responsibilities:
    - Parse the file into a list of raw records
    - Map heterogeneous column names onto canonical fields

    A parse failure raises an ExtractionError subclass and nothing is
    processed.
    """

    format_name: str = ""

    def __init__(self, file_path: str, content: Optional[bytes] = None):
        """
        Args:
            file_path: Path of the input file (or the uploaded file's name)
            content: Raw bytes, when the file was uploaded rather than on disk
        """
        self.file_path = Path(file_path)
        self.content = content

    def read_bytes(self) -> bytes:
        if self.content is not None:
            return self.content
        return self.file_path.read_bytes()

    @abstractmethod
    def parse(self) -> List[Dict[str, Any]]:
        """
        Parse the file.

        Returns:
            List of raw records with the file's own keys
        """
        pass

    def read_records(self) -> List[Dict[str, Any]]:
        """Parse and canonicalize every record"""
        records = [canonicalize_record(r) for r in self.parse()]
        logger.info(f"Read {len(records)} {self.format_name} records from {self.file_path}")
        return records
