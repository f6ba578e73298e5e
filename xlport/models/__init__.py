"""Domain models for the xlport import/export engine.

Value objects consumed and produced by the engines in xlport.services.
"""

from .error_record import ErrorRecord
from .errors import EngineError, ErrorKind
from .jobs import ImportJob, QueryJob, TableTarget, WorksheetTarget, parse_output_target
from .mapping import FieldMapping
from .results import ColumnInfo, ImportResult, QueryFailure, QuerySuccess
from .source import ColumnCell, InMemorySource, SourceDescriptor, SourceKind, SourceRow

__all__ = [
    # Errors
    "EngineError",
    "ErrorKind",
    "ErrorRecord",
    # Sources
    "ColumnCell",
    "InMemorySource",
    "SourceDescriptor",
    "SourceKind",
    "SourceRow",
    # Mapping / jobs
    "FieldMapping",
    "ImportJob",
    "QueryJob",
    "TableTarget",
    "WorksheetTarget",
    "parse_output_target",
    # Results
    "ColumnInfo",
    "ImportResult",
    "QueryFailure",
    "QuerySuccess",
]
