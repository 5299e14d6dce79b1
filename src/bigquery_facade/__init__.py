"""BigQuery facade - idempotent provisioning, streaming inserts and queries for one project."""

__version__ = "0.1.0"

from .catalog import CatalogCache, ColumnSpec, DatasetHandle, TableHandle, parse_schema
from .config import WarehouseConfig
from .errors import (
    DatasetNotFoundError,
    NotFoundError,
    PartialInsertFailure,
    QueryExecutionFailure,
    QueryIncompleteError,
    SchemaRequiredError,
    TableNotFoundError,
    UninitializedConnectionError,
    WarehouseConfigError,
    WarehouseError,
)
from .events import (
    ErrorEvent,
    EventSink,
    LifecycleEvent,
    LoggingEventSink,
    NullEventSink,
    RecordingEventSink,
)
from .facade import WarehouseFacade
from .formatter import format_query_results

__all__ = [
    "CatalogCache",
    "ColumnSpec",
    "DatasetHandle",
    "TableHandle",
    "parse_schema",
    "WarehouseConfig",
    "DatasetNotFoundError",
    "NotFoundError",
    "PartialInsertFailure",
    "QueryExecutionFailure",
    "QueryIncompleteError",
    "SchemaRequiredError",
    "TableNotFoundError",
    "UninitializedConnectionError",
    "WarehouseConfigError",
    "WarehouseError",
    "ErrorEvent",
    "EventSink",
    "LifecycleEvent",
    "LoggingEventSink",
    "NullEventSink",
    "RecordingEventSink",
    "WarehouseFacade",
    "format_query_results",
]
