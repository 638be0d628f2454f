"""
Pick the record source for an input file by its extension
"""

from pathlib import Path
from typing import Dict, Optional, Type
from ingestion.base import RecordSource
from ingestion.extractors.csv_extractor import CSVExtractor
from ingestion.extractors.json_extractor import JSONExtractor
from core.exceptions import UnsupportedFormatError

EXTRACTORS: Dict[str, Type[RecordSource]] = {
    ".csv": CSVExtractor,
    ".json": JSONExtractor,
}


def get_record_source(file_path: str, content: Optional[bytes] = None) -> RecordSource:
    """
    Raises:
        UnsupportedFormatError: Extension is neither .csv nor .json
    """
    suffix = Path(file_path).suffix.lower()
    extractor_cls = EXTRACTORS.get(suffix)
    if extractor_cls is None:
        raise UnsupportedFormatError(
            f"Unsupported file format: {suffix or '(none)'}. Please use .csv or .json",
            context={"file_path": str(file_path), "supported": sorted(EXTRACTORS)}
        )
    return extractor_cls(file_path, content=content)
