"""
CSV clinic file extractor
"""

import io
import pandas as pd
from typing import List, Dict, Any
from ingestion.base import RecordSource
from core.exceptions import CSVExtractionError
import logging

logger = logging.getLogger(__name__)


class CSVExtractor(RecordSource):
    """
    Extract clinic records from a comma-separated file with a header row.

    Supports:
    - Header normalization (strip, lowercase, spaces to underscores)
    - Every cell read as text; blank cells become empty strings
    """

    format_name = "CSV"

    def parse(self) -> List[Dict[str, Any]]:
        """
        Read CSV file.

        Raises:
            CSVExtractionError: If the file is missing or malformed
        """
        logger.info(f"Reading CSV from {self.file_path}")

        try:
            data = self.read_bytes()
        except OSError as e:
            raise CSVExtractionError(
                f"Cannot read CSV file: {self.file_path}",
                context={"file_path": str(self.file_path)},
                original_exception=e
            )

        if not data.strip():
            return []

        try:
            df = pd.read_csv(
                io.BytesIO(data),
                dtype=str,
                keep_default_na=False,
                skipinitialspace=True,
                encoding="utf-8-sig",
            )
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError, ValueError) as e:
            raise CSVExtractionError(
                f"Malformed CSV file: {self.file_path}",
                context={"file_path": str(self.file_path)},
                original_exception=e
            )

        # Normalize column names (strip whitespace, lowercase)
        df.columns = df.columns.str.strip().str.lower().str.replace(" ", "_")

        records = df.to_dict(orient="records")
        return [{k: v.strip() if isinstance(v, str) else v for k, v in r.items()} for r in records]
