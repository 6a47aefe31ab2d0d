"""File type inference for submitted legacy files."""

from legacy_migrator.models.import_job import ImportFileType

_EXTENSION_MAP: dict[str, ImportFileType] = {
    ".csv": ImportFileType.CSV,
    ".xml": ImportFileType.XML,
    ".json": ImportFileType.JSON,
    ".xlsx": ImportFileType.EXCEL,
    ".dka": ImportFileType.DOKA_LEGACY,
    ".fwf": ImportFileType.FIXED_WIDTH,
    ".dat": ImportFileType.FIXED_WIDTH,
}

_CONTENT_TYPE_MAP: dict[str, ImportFileType] = {
    "text/csv": ImportFileType.CSV,
    "application/xml": ImportFileType.XML,
    "text/xml": ImportFileType.XML,
    "application/json": ImportFileType.JSON,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ImportFileType.EXCEL,
}


def determine_file_type(filename: str, content_type: str | None = None) -> ImportFileType:
    """Infer the file type from the file name, then the content type.

    Args:
        filename: Original name of the uploaded file.
        content_type: MIME type reported by the client, if any.

    Returns:
        The inferred file type; CSV when nothing matches.
    """
    lowered = filename.lower()
    for extension, file_type in _EXTENSION_MAP.items():
        if lowered.endswith(extension):
            return file_type

    if content_type:
        media_type = content_type.split(";", 1)[0].strip().lower()
        if media_type in _CONTENT_TYPE_MAP:
            return _CONTENT_TYPE_MAP[media_type]

    return ImportFileType.CSV
