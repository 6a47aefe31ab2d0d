"""Record readers for the legacy file formats.

Every reader exposes the same three synchronous operations on a staged
file: a cheap shape check, a record count, and a positional read of a
window of records.  Offsets are zero-based record indexes (header rows are
not records), so a checkpoint can be handed straight back to
:func:`read_records`.  All values come back as stripped strings, with empty
values normalized to ``None``.
"""

import json
import math
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd
from loguru import logger

from legacy_migrator.models.import_job import ImportFileType

_COUNT_CHUNK_SIZE = 10_000

# Positional layout of a DOKA "REC:" line; the first five fields are mandatory
DOKA_FIELDS = (
    "guarantee_reference",
    "guarantee_type",
    "amount",
    "currency",
    "beneficiary_name",
    "applicant_name",
    "issue_date",
    "expiry_date",
)
_DOKA_MANDATORY_FIELDS = 5
_DOKA_HEADERS = ("DOKA", "GUARANTEE")
_DOKA_RECORD_PREFIX = "REC:"

# xlsx files are zip archives
_ZIP_MAGIC = b"PK\x03\x04"


@dataclass(frozen=True)
class FileReader:
    """The three operations a format has to provide."""

    validate: Callable[[Path], bool]
    count: Callable[[Path], int]
    read: Callable[[Path, int, int], list[dict[str, Any]]]


def _normalize(value: object) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _frame_to_records(frame: pd.DataFrame) -> list[dict[str, Any]]:
    frame.columns = [str(c).strip() for c in frame.columns]
    return [{k: _normalize(v) for k, v in row.items()} for row in frame.to_dict(orient="records")]


def detect_encoding(file_path: Path) -> str:
    """Detect the text encoding of a staged file.

    Args:
        file_path: Path to the file.

    Returns:
        ``"utf-8"`` when the file decodes as UTF-8, otherwise ``"latin-1"``.
    """
    try:
        with file_path.open("r", encoding="utf-8") as f:
            for _ in f:
                pass
    except UnicodeDecodeError:
        logger.debug(f"Falling back to latin-1 for {file_path}")
        return "latin-1"
    return "utf-8"


def _first_line(file_path: Path) -> str:
    with file_path.open("r", encoding=detect_encoding(file_path)) as f:
        return f.readline().lstrip("\ufeff")


def _iter_lines(file_path: Path) -> Iterator[str]:
    with file_path.open("r", encoding=detect_encoding(file_path)) as f:
        for line in f:
            yield line.rstrip("\r\n")


# --- CSV ---------------------------------------------------------------------


def _validate_csv(file_path: Path) -> bool:
    return "," in _first_line(file_path)


def _count_csv(file_path: Path) -> int:
    reader = pd.read_csv(
        file_path,
        encoding=detect_encoding(file_path),
        chunksize=_COUNT_CHUNK_SIZE,
        dtype=str,
        keep_default_na=False,
    )
    return sum(len(chunk) for chunk in reader)


def _read_csv(file_path: Path, offset: int, size: int) -> list[dict[str, Any]]:
    frame = pd.read_csv(
        file_path,
        encoding=detect_encoding(file_path),
        skiprows=range(1, offset + 1),
        nrows=size,
        dtype=str,
        keep_default_na=False,
    )
    return _frame_to_records(frame)


# --- JSON --------------------------------------------------------------------


def _load_json_array(file_path: Path) -> list[Any]:
    with file_path.open("r", encoding=detect_encoding(file_path)) as f:
        data = json.load(f)
    if not isinstance(data, list):
        msg = f"Expected a top-level JSON array in {file_path.name}"
        raise ValueError(msg)
    return data


def _validate_json(file_path: Path) -> bool:
    try:
        _load_json_array(file_path)
    except ValueError:
        return False
    return True


def _count_json(file_path: Path) -> int:
    return len(_load_json_array(file_path))


def _read_json(file_path: Path, offset: int, size: int) -> list[dict[str, Any]]:
    records = []
    for item in _load_json_array(file_path)[offset : offset + size]:
        if isinstance(item, dict):
            records.append({k: _normalize(v) for k, v in item.items()})
        else:
            records.append({"value": _normalize(item)})
    return records


# --- XML ---------------------------------------------------------------------


def _xml_records(file_path: Path) -> list[ET.Element]:
    return list(ET.parse(file_path).getroot())


def _element_to_record(element: ET.Element) -> dict[str, Any]:
    record: dict[str, Any] = {k: _normalize(v) for k, v in element.attrib.items()}
    for child in element:
        record[child.tag] = _normalize(child.text)
    return record


def _validate_xml(file_path: Path) -> bool:
    return _first_line(file_path).lstrip().startswith("<?xml")


def _count_xml(file_path: Path) -> int:
    return len(_xml_records(file_path))


def _read_xml(file_path: Path, offset: int, size: int) -> list[dict[str, Any]]:
    return [_element_to_record(e) for e in _xml_records(file_path)[offset : offset + size]]


# --- Excel -------------------------------------------------------------------


def _load_sheet(file_path: Path) -> pd.DataFrame:
    return pd.read_excel(file_path, sheet_name=0, dtype=str, engine="openpyxl")


def _validate_excel(file_path: Path) -> bool:
    with file_path.open("rb") as f:
        return f.read(len(_ZIP_MAGIC)) == _ZIP_MAGIC


def _count_excel(file_path: Path) -> int:
    return len(_load_sheet(file_path))


def _read_excel(file_path: Path, offset: int, size: int) -> list[dict[str, Any]]:
    return _frame_to_records(_load_sheet(file_path).iloc[offset : offset + size])


# --- Fixed width -------------------------------------------------------------


def _validate_fixed_width(file_path: Path) -> bool:
    return bool(_first_line(file_path).strip())


def _count_fixed_width(file_path: Path) -> int:
    # Header line excluded
    return max(sum(1 for line in _iter_lines(file_path) if line.strip()) - 1, 0)


def _read_fixed_width(file_path: Path, offset: int, size: int) -> list[dict[str, Any]]:
    frame = pd.read_fwf(
        file_path,
        encoding=detect_encoding(file_path),
        colspecs="infer",
        skiprows=range(1, offset + 1),
        nrows=size,
        dtype=str,
        skip_blank_lines=True,
    )
    return _frame_to_records(frame)


# --- DOKA legacy ---------------------------------------------------------------


def _validate_doka(file_path: Path) -> bool:
    return _first_line(file_path).startswith(_DOKA_HEADERS)


def _doka_lines(file_path: Path) -> Iterator[str]:
    for line in _iter_lines(file_path):
        if line.startswith(_DOKA_RECORD_PREFIX):
            yield line[len(_DOKA_RECORD_PREFIX) :]


def parse_doka_line(line: str) -> dict[str, Any]:
    """Split the body of a DOKA ``REC:`` line into a record.

    Args:
        line: The line content after the ``REC:`` prefix.

    Returns:
        Record dict keyed by :data:`DOKA_FIELDS`; optional trailing
        fields are only present when the line carries them.

    Raises:
        ValueError: If the line has fewer than the five mandatory fields.
    """
    parts = line.split("|")
    if len(parts) < _DOKA_MANDATORY_FIELDS:
        msg = f"DOKA record has {len(parts)} fields, expected at least {_DOKA_MANDATORY_FIELDS}"
        raise ValueError(msg)
    return {name: _normalize(value) for name, value in zip(DOKA_FIELDS, parts, strict=False)}


def _count_doka(file_path: Path) -> int:
    return sum(1 for _ in _doka_lines(file_path))


def _read_doka(file_path: Path, offset: int, size: int) -> list[dict[str, Any]]:
    records: list[dict[str, Any]] = []
    for index, body in enumerate(_doka_lines(file_path)):
        if index < offset:
            continue
        if len(records) >= size:
            break
        try:
            records.append(parse_doka_line(body))
        except ValueError:
            # Malformed lines still occupy their position and fail record validation
            records.append({"raw": body})
    return records


READERS: dict[ImportFileType, FileReader] = {
    ImportFileType.CSV: FileReader(_validate_csv, _count_csv, _read_csv),
    ImportFileType.JSON: FileReader(_validate_json, _count_json, _read_json),
    ImportFileType.XML: FileReader(_validate_xml, _count_xml, _read_xml),
    ImportFileType.EXCEL: FileReader(_validate_excel, _count_excel, _read_excel),
    ImportFileType.FIXED_WIDTH: FileReader(_validate_fixed_width, _count_fixed_width, _read_fixed_width),
    ImportFileType.DOKA_LEGACY: FileReader(_validate_doka, _count_doka, _read_doka),
}


def get_reader(file_type: str) -> FileReader:
    """Look up the reader for a file type.

    Raises:
        ValueError: If the file type has no reader.
    """
    try:
        return READERS[ImportFileType(file_type)]
    except ValueError:
        msg = f"Unsupported file type: {file_type}"
        raise ValueError(msg) from None


def validate_file_shape(file_path: Path, file_type: str) -> bool:
    """Check that a staged file looks like the declared format.

    Empty files never pass.
    """
    if not file_path.exists() or file_path.stat().st_size == 0:
        return False
    return get_reader(file_type).validate(file_path)


def count_records(file_path: Path, file_type: str) -> int:
    """Count the records in a staged file."""
    return get_reader(file_type).count(file_path)


def read_records(file_path: Path, file_type: str, offset: int, size: int) -> list[dict[str, Any]]:
    """Read up to ``size`` records starting at record ``offset``.

    Returns:
        The records in file order; an empty list past the end of the file.
    """
    if size <= 0:
        return []
    return get_reader(file_type).read(file_path, offset, size)
