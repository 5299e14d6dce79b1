"""
Asynchronous facade over one BigQuery project.

Blocking client calls run on worker threads via ``asyncio.to_thread``.
Concurrent calls on the same instance are not serialized: two provisioning
calls for the same name may both find it absent and both try to create it.
"""
import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Union

from google.cloud import bigquery

from .catalog import CatalogCache, DatasetHandle, SchemaDescriptor, TableHandle
from .config import WarehouseConfig, coerce_config
from .connection import Connection, open_connection
from .data_plane import (
    DEFAULT_MAXIMUM_BILLING_TIER,
    is_update_available,
    iter_query_pages,
    run_query,
    stream_insert,
)
from .errors import UninitializedConnectionError
from .events import EventEmitter, EventSink
from .provisioning import ensure_dataset, ensure_table

logger = logging.getLogger(__name__)


class WarehouseFacade:
    """
    Idempotent provisioning, streaming inserts and queries for one project.

    ``init()`` must succeed before anything else. Datasets and tables must be
    provisioned with ``create_dataset``/``create_table`` before the data
    operations can use them; a catalog miss is never resolved remotely.

    Args:
        name: Instance name used to tag every emitted event.
        config: A ``WarehouseConfig`` or a mapping such as
            ``{"projectId": "p1", "credentials": {...}}``.
        events: Receiver for log/success/error notifications. Defaults to a
            receiver that writes to the ``logging`` module.
    """

    def __init__(
        self,
        name: str,
        config: Union[WarehouseConfig, Mapping[str, Any]],
        events: Optional[EventSink] = None,
    ):
        self._name = name
        self._config = coerce_config(config)
        self._events = EventEmitter(name, events)
        self._connection: Optional[Connection] = None
        self._catalog = CatalogCache()

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> WarehouseConfig:
        return self._config

    @property
    def events(self) -> EventEmitter:
        return self._events

    @property
    def connection(self) -> Optional[Connection]:
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @property
    def client(self) -> bigquery.Client:
        return self._require_connection().client

    @property
    def catalog(self) -> CatalogCache:
        return self._catalog

    def _require_connection(self) -> Connection:
        if self._connection is None:
            raise UninitializedConnectionError(self._name)
        return self._connection

    async def init(self) -> "WarehouseFacade":
        """Connect to the configured project. Later calls keep the first connection."""
        if self._connection is not None:
            logger.debug(f"'{self._name}' is already connected to {self._connection.project_id}")
            return self
        connection = await asyncio.to_thread(open_connection, self._config, self._events)
        if self._connection is None:
            self._connection = connection
        return self

    async def create_dataset(self, dataset_name: str) -> DatasetHandle:
        client = self._require_connection().client
        return await asyncio.to_thread(
            ensure_dataset, client, self._catalog, dataset_name, self._events
        )

    def get_dataset(self, dataset_name: str) -> DatasetHandle:
        return self._catalog.get_dataset(dataset_name)

    async def create_table(
        self,
        dataset_name: str,
        table_name: str,
        schema: Optional[SchemaDescriptor] = None,
    ) -> TableHandle:
        """
        Provision a table in an already provisioned dataset.

        Args:
            dataset_name: Dataset previously passed to ``create_dataset``.
            table_name: Table to find or create.
            schema: Columns used only when the table has to be created, either
                as ``[{"name": ..., "type": ...}]`` or ``"name:type,..."``.
                Valid types are string, integer, float, boolean and timestamp.
        """
        client = self._require_connection().client
        return await asyncio.to_thread(
            ensure_table,
            client,
            self._catalog,
            dataset_name,
            table_name,
            schema,
            self._events,
        )

    def get_table(self, dataset_name: str, table_name: str) -> TableHandle:
        return self._catalog.get_table(dataset_name, table_name)

    async def insert(
        self,
        rows: Sequence[Mapping[str, Any]],
        dataset_name: str,
        table_name: str,
    ) -> int:
        """Stream ``rows`` into a provisioned table; returns the number of rows sent."""
        client = self._require_connection().client
        table = self._catalog.get_table(dataset_name, table_name)
        return await asyncio.to_thread(stream_insert, client, table, rows, self._events)

    async def query(
        self,
        raw_query: str,
        use_legacy_sql: bool = False,
        maximum_billing_tier: int = DEFAULT_MAXIMUM_BILLING_TIER,
    ) -> List[Dict[str, Any]]:
        """
        Run a query and wait for its rows.

        Warning: ``raw_query`` is sent as is; never build it from untrusted input.
        """
        client = self._require_connection().client
        return await asyncio.to_thread(
            run_query,
            client,
            raw_query,
            self._events,
            use_legacy_sql=use_legacy_sql,
            maximum_billing_tier=maximum_billing_tier,
        )

    def query_stream(
        self,
        raw_query: str,
        use_legacy_sql: bool = False,
        maximum_billing_tier: int = DEFAULT_MAXIMUM_BILLING_TIER,
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Return an async iterator over the query's rows.

        Nothing is sent until the first row is pulled. Pages are fetched one at
        a time as the consumer advances; the iterator cannot be restarted.
        """
        client = self._require_connection().client
        return self._stream_rows(client, raw_query, use_legacy_sql, maximum_billing_tier)

    async def _stream_rows(
        self,
        client: bigquery.Client,
        raw_query: str,
        use_legacy_sql: bool,
        maximum_billing_tier: int,
    ) -> AsyncIterator[Dict[str, Any]]:
        pages = iter_query_pages(client, raw_query, use_legacy_sql, maximum_billing_tier)
        while True:
            page = await asyncio.to_thread(next, pages, None)
            if page is None:
                return
            for row in page:
                yield row

    async def update_available(self, table_name: str, dataset_name: str) -> bool:
        """True when the table has no streaming buffer and can be updated or deleted from."""
        client = self._require_connection().client
        table = self._catalog.get_table(dataset_name, table_name)
        return await asyncio.to_thread(is_update_available, client, table)
