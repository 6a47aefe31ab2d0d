"""Importer library public API.

Provides legacy file readers, record validation, file staging, record
processors and error reports used by the migration orchestrator.
"""

from legacy_migrator.lib.importer.error_report import CsvErrorReportWriter, ErrorReportWriter
from legacy_migrator.lib.importer.file_types import determine_file_type
from legacy_migrator.lib.importer.pause import PauseController, PauseSignal
from legacy_migrator.lib.importer.processor import (
    EntityRecordProcessor,
    RecordProcessor,
    default_processors,
    natural_key,
)
from legacy_migrator.lib.importer.readers import count_records, read_records, validate_file_shape
from legacy_migrator.lib.importer.rules import default_validation_rules, is_supported_entity
from legacy_migrator.lib.importer.staging import FileStageManager, LocalFileStageManager
from legacy_migrator.lib.importer.validator import check_record, suggest_fix, validate_record

__all__ = [
    "CsvErrorReportWriter",
    "EntityRecordProcessor",
    "ErrorReportWriter",
    "FileStageManager",
    "LocalFileStageManager",
    "PauseController",
    "PauseSignal",
    "RecordProcessor",
    "check_record",
    "count_records",
    "default_processors",
    "default_validation_rules",
    "determine_file_type",
    "is_supported_entity",
    "natural_key",
    "read_records",
    "suggest_fix",
    "validate_file_shape",
    "validate_record",
]
