"""
Create-if-absent provisioning of datasets and tables.

The existence probe and the create call are two separate requests. Another
process creating the same dataset or table in between is not guarded against;
the resulting create error propagates to the caller.
"""
import logging
from typing import Optional

from google.api_core import exceptions
from google.cloud import bigquery

from .catalog import (
    CatalogCache,
    DatasetHandle,
    SchemaDescriptor,
    TableHandle,
    parse_schema,
    to_schema_fields,
)
from .errors import SchemaRequiredError
from .events import EventEmitter

logger = logging.getLogger(__name__)


def _require_name(value: str, kind: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{kind} name cannot be empty.")
    return value


def dataset_exists(client: bigquery.Client, reference: bigquery.DatasetReference) -> bool:
    try:
        client.get_dataset(reference)
        return True
    except exceptions.NotFound:
        return False


def table_exists(client: bigquery.Client, reference: bigquery.TableReference) -> bool:
    try:
        client.get_table(reference)
        return True
    except exceptions.NotFound:
        return False


def ensure_dataset(
    client: bigquery.Client,
    cache: CatalogCache,
    dataset_name: str,
    events: EventEmitter,
) -> DatasetHandle:
    """
    Make sure ``dataset_name`` exists in the client's project and cache its handle.

    Idempotent: repeated calls converge on the same handle and never fail
    because the dataset already exists.
    """
    _require_name(dataset_name, "Dataset")
    events.log(f"Creating dataset {dataset_name}")
    reference = bigquery.DatasetReference(client.project, dataset_name)

    if dataset_exists(client, reference):
        events.success(f'Dataset "{dataset_name}" already exists')
    else:
        logger.info(f"Dataset [{reference}] does not exist. Creating...")
        client.create_dataset(bigquery.Dataset(reference))
        events.success(f'Dataset "{dataset_name}" created')

    return cache.put_dataset(DatasetHandle(name=dataset_name, reference=reference))


def ensure_table(
    client: bigquery.Client,
    cache: CatalogCache,
    dataset_name: str,
    table_name: str,
    schema: Optional[SchemaDescriptor],
    events: EventEmitter,
) -> TableHandle:
    """
    Make sure ``dataset_name.table_name`` exists and cache its handle.

    The dataset must already be in the catalog. A missing table is created
    only when a schema is supplied; otherwise SchemaRequiredError is raised and
    nothing is created. An existing table is left untouched and any schema
    given is ignored.
    """
    _require_name(table_name, "Table")
    events.log(f"Creating table {table_name} in {dataset_name}")
    dataset = cache.get_dataset(dataset_name)
    columns = parse_schema(schema) if schema else None
    reference = dataset.reference.table(table_name)

    if table_exists(client, reference):
        events.success(f'Table "{dataset_name}.{table_name}" already exists')
        handle = TableHandle(
            dataset_name=dataset_name, table_name=table_name, reference=reference
        )
        return cache.put_table(handle)

    if columns is None:
        raise SchemaRequiredError(dataset_name, table_name)

    logger.info(f"Table [{reference}] does not exist. Creating with {len(columns)} columns...")
    client.create_table(bigquery.Table(reference, schema=to_schema_fields(columns)))
    events.success(f'Table "{dataset_name}.{table_name}" created')
    handle = TableHandle(
        dataset_name=dataset_name,
        table_name=table_name,
        reference=reference,
        schema=columns,
    )
    return cache.put_table(handle)
