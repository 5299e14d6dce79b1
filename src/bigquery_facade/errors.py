"""
Error taxonomy for the warehouse facade.

Transport and remote failures are not wrapped: they surface as the
``google.api_core.exceptions`` types raised by the BigQuery client.
"""
import json
from typing import Any, List, Sequence


class WarehouseError(RuntimeError):
    """Base class for errors raised by the facade itself."""

    pass


class WarehouseConfigError(WarehouseError):
    """Raised when the configuration record is missing or invalid."""

    pass


class UninitializedConnectionError(WarehouseError):
    """Raised when an operation runs before a successful ``init()``."""

    def __init__(self, service: str):
        self.service = service
        super().__init__(
            f"Connection for '{service}' is not initialized. Call init() first."
        )


class NotFoundError(WarehouseError, LookupError):
    """Raised when a dataset or table was never provisioned in this process."""

    pass


class DatasetNotFoundError(NotFoundError):
    def __init__(self, dataset_name: str):
        self.dataset_name = dataset_name
        super().__init__(f'Dataset "{dataset_name}" not found')


class TableNotFoundError(NotFoundError):
    def __init__(self, dataset_name: str, table_name: str):
        self.dataset_name = dataset_name
        self.table_name = table_name
        super().__init__(f'Table "{table_name}" not found in "{dataset_name}"')


class SchemaRequiredError(WarehouseError):
    """Raised when a table does not exist remotely and no schema was given."""

    def __init__(self, dataset_name: str, table_name: str):
        self.dataset_name = dataset_name
        self.table_name = table_name
        super().__init__(
            f'"{dataset_name}.{table_name}" does not exist and no schema was given'
        )


class PartialInsertFailure(WarehouseError):
    """
    Raised when a streaming insert rejects some rows.

    ``errors`` is the per-row rejection payload exactly as the client returned
    it (a list of ``{"index": ..., "errors": [...]}`` mappings).
    """

    def __init__(self, table: str, errors: Sequence[Any]):
        self.table = table
        self.errors = errors
        super().__init__(json.dumps(list(errors), indent=2, default=str))


class QueryExecutionFailure(WarehouseError):
    """Raised when a query job reports execution errors."""

    def __init__(self, messages: List[str]):
        self.messages = messages
        super().__init__(";".join(messages))


class QueryIncompleteError(WarehouseError):
    """Raised when a finished wait leaves results that need pagination."""

    def __init__(self, message: str = "Job not complete: Might need to implement pagination"):
        super().__init__(message)
