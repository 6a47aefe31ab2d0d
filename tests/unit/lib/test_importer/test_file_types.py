"""Unit tests for file type inference."""

import pytest

from legacy_migrator.lib.importer.file_types import determine_file_type
from legacy_migrator.models.import_job import ImportFileType


@pytest.mark.parametrize(
    ("filename", "expected"),
    [
        ("guarantees.csv", ImportFileType.CSV),
        ("GUARANTEES.CSV", ImportFileType.CSV),
        ("clients.xml", ImportFileType.XML),
        ("clients.json", ImportFileType.JSON),
        ("commissions.xlsx", ImportFileType.EXCEL),
        ("export_20240131.dka", ImportFileType.DOKA_LEGACY),
        ("mainframe.dat", ImportFileType.FIXED_WIDTH),
        ("mainframe.fwf", ImportFileType.FIXED_WIDTH),
    ],
)
def test_extension_wins(filename: str, expected: ImportFileType) -> None:
    assert determine_file_type(filename, "application/octet-stream") == expected


def test_content_type_used_without_known_extension() -> None:
    assert determine_file_type("upload", "application/json; charset=utf-8") == ImportFileType.JSON
    assert determine_file_type("upload.bin", "text/xml") == ImportFileType.XML


def test_defaults_to_csv() -> None:
    assert determine_file_type("README") == ImportFileType.CSV
    assert determine_file_type("archive.zip", "application/zip") == ImportFileType.CSV
