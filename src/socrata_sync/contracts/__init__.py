"""Shared contracts: enums, errors, value model and result types.

This package has no dependencies on engine, core or client code.
"""

from socrata_sync.contracts.cursor import ResumePlan, SyncCursor
from socrata_sync.contracts.enums import OnError, SourceType, TargetType, UpstreamShape
from socrata_sync.contracts.errors import (
    AcquireTimeoutError,
    ConfigurationError,
    FieldError,
    MissingRequiredFieldError,
    PersistentIOError,
    RecordShapeError,
    SyncError,
    TransientTransportError,
    UnhandledConversionError,
    ValueConversionError,
)
from socrata_sync.contracts.metadata import ColumnMetadata, DatasetMetadata
from socrata_sync.contracts.results import ChunkResult, ProgressEvent, SyncResult, TranscodeStats
from socrata_sync.contracts.values import JSONValue, Record

__all__ = [
    "AcquireTimeoutError",
    "ChunkResult",
    "ColumnMetadata",
    "ConfigurationError",
    "DatasetMetadata",
    "FieldError",
    "JSONValue",
    "MissingRequiredFieldError",
    "OnError",
    "PersistentIOError",
    "ProgressEvent",
    "Record",
    "RecordShapeError",
    "ResumePlan",
    "SourceType",
    "SyncCursor",
    "SyncError",
    "SyncResult",
    "TargetType",
    "TranscodeStats",
    "TransientTransportError",
    "UnhandledConversionError",
    "UpstreamShape",
    "ValueConversionError",
]
