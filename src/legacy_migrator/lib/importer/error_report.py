"""CSV error report writer for finished import jobs."""

import csv
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from legacy_migrator.models.import_job import ImportJob
from legacy_migrator.models.import_job_error import ImportJobError

# Characters that trigger formula execution in spreadsheet applications
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")

REPORT_COLUMNS = [
    "record_number",
    "error_type",
    "error_code",
    "category",
    "severity",
    "affected_field",
    "error_message",
    "suggested_fix",
    "record_data",
]


def _sanitize_cell(value: object) -> object:
    """Prefix formula-triggering values with a single quote."""
    if isinstance(value, str) and value and value[0] in _FORMULA_PREFIXES:
        return f"'{value}"
    return value


class ErrorReportWriter(Protocol):
    """Writes the failed records of a job somewhere an operator can read them."""

    def write(self, job: ImportJob, errors: Iterable[ImportJobError]) -> str:
        """Write the report and return its location."""
        ...


class CsvErrorReportWriter:
    """Writes one ``{job_id}_errors.csv`` file per job.

    Args:
        error_dir: Directory that receives the reports.
    """

    def __init__(self, error_dir: str | Path) -> None:
        self._error_dir = Path(error_dir)

    def write(self, job: ImportJob, errors: Iterable[ImportJobError]) -> str:
        self._error_dir.mkdir(parents=True, exist_ok=True)
        output_path = self._error_dir / f"{job.job_id}_errors.csv"

        with output_path.open("w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=REPORT_COLUMNS, extrasaction="ignore")
            writer.writeheader()
            for error in errors:
                row = {column: getattr(error, column) for column in REPORT_COLUMNS}
                writer.writerow({k: _sanitize_cell(v) for k, v in row.items()})

        return str(output_path)
