"""
JSON clinic file extractor
"""

import json
from typing import List, Dict, Any
from ingestion.base import RecordSource
from core.exceptions import JSONExtractionError
import logging

logger = logging.getLogger(__name__)


class JSONExtractor(RecordSource):
    """
    Extract clinic records from JSON.

    Accepted shapes:
    - a top-level array of record objects
    - an object with a "clinics" array
    - an object with exactly one array-valued property
    - a single record object
    """

    format_name = "JSON"

    def parse(self) -> List[Dict[str, Any]]:
        logger.info(f"Reading JSON from {self.file_path}")

        try:
            data = json.loads(self.read_bytes().decode("utf-8-sig"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise JSONExtractionError(
                f"Failed to parse JSON file: {self.file_path}",
                context={"file_path": str(self.file_path)},
                original_exception=e
            )

        records = self._unwrap(data)

        bad_rows = [i for i, r in enumerate(records) if not isinstance(r, dict)]
        if bad_rows:
            raise JSONExtractionError(
                "Invalid JSON format: every record must be an object",
                context={"file_path": str(self.file_path), "bad_rows": bad_rows[:10]}
            )

        return records

    def _unwrap(self, data: Any) -> List[Any]:
        if isinstance(data, list):
            return data

        if isinstance(data, dict):
            if isinstance(data.get("clinics"), list):
                return data["clinics"]

            array_values = [v for v in data.values() if isinstance(v, list)]
            if len(array_values) == 1:
                return array_values[0]
            if not array_values:
                return [data]

        raise JSONExtractionError(
            "Invalid JSON format: expected an array of clinics or an object with a 'clinics' array",
            context={"file_path": str(self.file_path)}
        )
