"""
Handles for provisioned datasets and tables, and the in-process catalog that
records them.

Membership in the catalog is the only existence check downstream operations
use. Lookups never call BigQuery.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from google.cloud import bigquery

from .errors import DatasetNotFoundError, TableNotFoundError

logger = logging.getLogger(__name__)

COLUMN_TYPES = {
    "string": "STRING",
    "integer": "INTEGER",
    "float": "FLOAT",
    "boolean": "BOOLEAN",
    "timestamp": "TIMESTAMP",
}


@dataclass(frozen=True)
class ColumnSpec:
    """One ``(name, type)`` pair of a schema descriptor."""
    name: str
    type: str

    def to_schema_field(self) -> bigquery.SchemaField:
        return bigquery.SchemaField(self.name, COLUMN_TYPES[self.type])


SchemaDescriptor = Union[str, Sequence[Union[ColumnSpec, Mapping[str, Any]]]]


def _column_from_pair(name: Any, column_type: Any) -> ColumnSpec:
    if not isinstance(name, str) or not name.strip():
        raise ValueError(f"Invalid column name {name!r}. Column names cannot be empty.")
    if not isinstance(column_type, str):
        raise ValueError(f"Invalid type {column_type!r} for column '{name}'.")
    normalized = column_type.strip().lower()
    if normalized not in COLUMN_TYPES:
        allowed = ", ".join(COLUMN_TYPES)
        raise ValueError(
            f"Unsupported type '{column_type}' for column '{name}'. "
            f"Valid types are: {allowed}"
        )
    return ColumnSpec(name=name.strip(), type=normalized)


def parse_schema(descriptor: SchemaDescriptor) -> Tuple[ColumnSpec, ...]:
    """
    Parse a schema descriptor into an ordered tuple of ``ColumnSpec``.

    Accepts a list of ``{"name": ..., "type": ...}`` mappings, a list of
    ``ColumnSpec``, or the comma-separated ``"name:type,name:type"`` form.
    Raises ValueError for empty, malformed or duplicate entries.
    """
    columns: List[ColumnSpec] = []
    if isinstance(descriptor, str):
        for pair in descriptor.split(","):
            parts = pair.split(":")
            if len(parts) != 2:
                raise ValueError(
                    f"Invalid schema entry '{pair.strip()}'. Expected format: name:type"
                )
            columns.append(_column_from_pair(parts[0], parts[1]))
    else:
        for item in descriptor:
            if isinstance(item, ColumnSpec):
                columns.append(_column_from_pair(item.name, item.type))
            elif isinstance(item, Mapping):
                columns.append(_column_from_pair(item.get("name"), item.get("type")))
            else:
                raise ValueError(
                    f"Invalid schema entry {item!r}. Expected a mapping with 'name' and 'type'."
                )

    if not columns:
        raise ValueError("Schema must contain at least one column.")

    seen = set()
    for column in columns:
        if column.name in seen:
            raise ValueError(f"Duplicate column '{column.name}' in schema.")
        seen.add(column.name)
    return tuple(columns)


def to_schema_fields(columns: Sequence[ColumnSpec]) -> List[bigquery.SchemaField]:
    return [column.to_schema_field() for column in columns]


@dataclass(frozen=True)
class DatasetHandle:
    name: str
    reference: bigquery.DatasetReference


@dataclass(frozen=True)
class TableHandle:
    dataset_name: str
    table_name: str
    reference: bigquery.TableReference
    schema: Optional[Tuple[ColumnSpec, ...]] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.dataset_name, self.table_name)

    @property
    def full_name(self) -> str:
        return f"{self.dataset_name}.{self.table_name}"


class CatalogCache:
    """
    Datasets and tables provisioned during this process.

    Writes overwrite (last writer wins). The lock only keeps each mapping
    consistent across worker threads; it does not serialize provisioning.
    """

    def __init__(self):
        self._datasets: Dict[str, DatasetHandle] = {}
        self._tables: Dict[Tuple[str, str], TableHandle] = {}
        self._lock = threading.Lock()

    def put_dataset(self, handle: DatasetHandle) -> DatasetHandle:
        with self._lock:
            self._datasets[handle.name] = handle
        logger.debug(f"Cached dataset '{handle.name}'")
        return handle

    def put_table(self, handle: TableHandle) -> TableHandle:
        with self._lock:
            self._tables[handle.key] = handle
        logger.debug(f"Cached table '{handle.full_name}'")
        return handle

    def get_dataset(self, dataset_name: str) -> DatasetHandle:
        with self._lock:
            handle = self._datasets.get(dataset_name)
        if handle is None:
            raise DatasetNotFoundError(dataset_name)
        return handle

    def get_table(self, dataset_name: str, table_name: str) -> TableHandle:
        with self._lock:
            handle = self._tables.get((dataset_name, table_name))
        if handle is None:
            raise TableNotFoundError(dataset_name, table_name)
        return handle

    def has_dataset(self, dataset_name: str) -> bool:
        with self._lock:
            return dataset_name in self._datasets

    def has_table(self, dataset_name: str, table_name: str) -> bool:
        with self._lock:
            return (dataset_name, table_name) in self._tables

    def dataset_names(self) -> List[str]:
        with self._lock:
            return sorted(self._datasets)

    def table_keys(self) -> List[Tuple[str, str]]:
        with self._lock:
            return sorted(self._tables)
