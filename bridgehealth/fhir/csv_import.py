"""
CSV ingestion - uploaded NAMASTE codes to a FHIR collection Bundle.

Rows carry `Code`, `Term` and an optional `Definition` column. The Bundle
holds one CodeSystem describing all uploaded codes, followed by exactly
one Condition per row.
"""
import csv
import io
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .bundler import FHIRBundler, SynthesizedBundle
from .mappers import (
    UPLOADED_CODES_SYSTEM,
    CodeSystemMapper,
    UploadedConditionMapper,
    format_instant,
)

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("Code", "Term")
CONDITION_BASE_URL = "http://namaste-ayush.in/fhir/Condition"


class CsvImportError(ValueError):
    """Raised when an uploaded CSV cannot be turned into a Bundle."""


@dataclass
class CsvImportResult:
    """Result of CSV conversion."""
    rows: List[Dict[str, str]]
    bundle: SynthesizedBundle

    @property
    def row_count(self) -> int:
        return len(self.rows)


def parse_csv(text: str) -> List[Dict[str, str]]:
    """
    Parse CSV text into row dicts.

    Blank lines are skipped and cell values are stripped.

    Raises:
        CsvImportError: if the header lacks Code or Term
    """
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    header = [name.strip() for name in (reader.fieldnames or [])]
    missing = [column for column in REQUIRED_COLUMNS if column not in header]
    if missing:
        raise CsvImportError(f"CSV is missing required column(s): {', '.join(missing)}")

    rows = []
    for raw in reader:
        row = {
            (key or "").strip(): (value or "").strip()
            for key, value in raw.items()
            if key is not None and not isinstance(value, list)
        }
        if not any(row.values()):
            continue
        rows.append(row)
    return rows


class CsvBundleConverter:
    """
    Converts uploaded CSV rows to a collection Bundle.

    Usage:
        converter = CsvBundleConverter()
        result = converter.convert_text(uploaded_text)
    """

    def __init__(self, clock: Callable[[], datetime] = None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def convert(self, rows: List[Dict[str, str]]) -> SynthesizedBundle:
        """
        Build the CodeSystem + Conditions Bundle.

        Raises:
            CsvImportError: if there are no rows
        """
        if not rows:
            raise CsvImportError("CSV contains no data rows")

        now = self.clock()
        bundler = FHIRBundler(bundle_type="collection")
        bundler.add_resource(CodeSystemMapper.build(rows, now), full_url=UPLOADED_CODES_SYSTEM)
        for index, row in enumerate(rows, start=1):
            bundler.add_resource(
                UploadedConditionMapper.build(row, index, now),
                full_url=f"{CONDITION_BASE_URL}/condition-{index}"
            )

        bundle = bundler.build(
            timestamp=format_instant(now),
            id="namaste-csv-upload-bundle",
            meta={"lastUpdated": format_instant(now), "source": "#csv-upload"},
            total=len(rows) + 1,
        )
        logger.info("Converted %d uploaded CSV row(s) to a FHIR bundle", len(rows))
        return bundle

    def convert_text(self, text: str) -> CsvImportResult:
        rows = parse_csv(text)
        return CsvImportResult(rows=rows, bundle=self.convert(rows))


def decode_upload(raw: bytes, encoding: Optional[str] = None) -> str:
    """Decode uploaded bytes, tolerating a UTF-8 byte order mark."""
    try:
        return raw.decode(encoding or "utf-8-sig")
    except UnicodeDecodeError as e:
        raise CsvImportError(f"CSV is not valid {encoding or 'UTF-8'} text") from e
