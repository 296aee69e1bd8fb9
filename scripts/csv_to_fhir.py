#!/usr/bin/env python3
"""
Convert a NAMASTE codes CSV into a FHIR collection Bundle file.

The CSV needs `Code` and `Term` columns and may carry `Definition`.
The Bundle is written next to the CSV as <name>_fhir.json unless an
output path is given.

Usage:
    python scripts/csv_to_fhir.py data/namaste_codes.csv [output.json]
"""
import logging
import sys
from pathlib import Path

# Add parent directory to path to import bridgehealth modules
sys.path.append(str(Path(__file__).parent.parent))

from bridgehealth.config import configure_logging
from bridgehealth.fhir import CsvBundleConverter, CsvImportError, render_bundle
from bridgehealth.fhir.csv_import import decode_upload

logger = logging.getLogger("csv_to_fhir")


def convert_file(csv_path: Path, output_path: Path = None) -> Path:
    """Convert one CSV file and write the rendered Bundle"""
    output_path = output_path or csv_path.with_name(f"{csv_path.stem}_fhir.json")
    result = CsvBundleConverter().convert_text(decode_upload(csv_path.read_bytes()))
    output_path.write_bytes(render_bundle(result.bundle))
    logger.info("Wrote %d condition(s) to %s", result.row_count, output_path)
    return output_path


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print(__doc__)
        return 2

    configure_logging()
    csv_path = Path(argv[0])
    if not csv_path.exists():
        logger.error("CSV file not found: %s", csv_path)
        return 1

    output_path = Path(argv[1]) if len(argv) > 1 else None
    try:
        convert_file(csv_path, output_path)
    except CsvImportError as e:
        logger.error("Conversion failed: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
