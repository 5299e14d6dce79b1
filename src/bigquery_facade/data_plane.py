"""
Streaming inserts, query execution and table mutability checks.

Every function here expects a table handle that was resolved from the
catalog; none of them provision anything.
"""
import logging
from typing import Any, Dict, Iterator, List, Mapping, Sequence

from google.api_core import exceptions
from google.cloud import bigquery

from .catalog import TableHandle
from .errors import PartialInsertFailure, QueryExecutionFailure, QueryIncompleteError
from .events import EventEmitter

logger = logging.getLogger(__name__)

DEFAULT_MAXIMUM_BILLING_TIER = 3


def _row_to_dict(row: Any) -> Dict[str, Any]:
    return dict(row.items())


def _query_job_config(use_legacy_sql: bool, maximum_billing_tier: int) -> bigquery.QueryJobConfig:
    return bigquery.QueryJobConfig(
        use_legacy_sql=use_legacy_sql,
        maximum_billing_tier=maximum_billing_tier,
    )


def _job_error_messages(job: bigquery.QueryJob) -> List[str]:
    """Collect the messages of every execution error recorded on the job."""
    errors = job.errors or []
    return [
        err.get("message", str(err)) if isinstance(err, Mapping) else str(err)
        for err in errors
    ]


def stream_insert(
    client: bigquery.Client,
    table: TableHandle,
    rows: Sequence[Mapping[str, Any]],
    events: EventEmitter,
) -> int:
    """
    Stream ``rows`` into ``table`` and return how many were sent.

    Rejected rows raise PartialInsertFailure carrying the per-row error
    payload. Transport errors propagate unchanged. Nothing is retried.
    """
    if not rows:
        logger.debug(f"No rows to insert into {table.full_name}")
        return 0

    logger.info(f"Inserting {len(rows)} rows into {table.full_name}")
    errors = client.insert_rows_json(table.reference, [dict(row) for row in rows])
    if errors:
        raise PartialInsertFailure(table.full_name, errors)

    events.log(f"Inserted {len(rows)} rows into {table.full_name}")
    return len(rows)


def run_query(
    client: bigquery.Client,
    raw_query: str,
    events: EventEmitter,
    use_legacy_sql: bool = False,
    maximum_billing_tier: int = DEFAULT_MAXIMUM_BILLING_TIER,
) -> List[Dict[str, Any]]:
    """
    Submit a query job, wait for it once and return its rows.

    After the wait, execution errors are checked before completeness, so a
    failed job always reports its own errors. Only the first result page is
    read: a job that is not done, or that has more pages, raises
    QueryIncompleteError.
    """
    logger.info(f"Submitting query job (legacy_sql={use_legacy_sql}), length={len(raw_query)}")
    job = client.query(
        raw_query, job_config=_query_job_config(use_legacy_sql, maximum_billing_tier)
    )

    try:
        row_iterator = job.result()
    except exceptions.GoogleAPICallError as e:
        events.error(e, {"query": raw_query, "jobId": job.job_id})
        messages = _job_error_messages(job)
        if messages:
            raise QueryExecutionFailure(messages) from e
        raise

    messages = _job_error_messages(job)
    if messages:
        raise QueryExecutionFailure(messages)

    if job.state != "DONE":
        raise QueryIncompleteError()

    first_page = next(iter(row_iterator.pages), None)
    rows = [_row_to_dict(row) for row in first_page] if first_page is not None else []
    if getattr(row_iterator, "next_page_token", None):
        raise QueryIncompleteError()

    events.success(f"Query Successful: {raw_query}")
    return rows


def iter_query_pages(
    client: bigquery.Client,
    raw_query: str,
    use_legacy_sql: bool = False,
    maximum_billing_tier: int = DEFAULT_MAXIMUM_BILLING_TIER,
) -> Iterator[List[Dict[str, Any]]]:
    """
    Yield query results one page at a time.

    The job is submitted when the first page is requested. Later pages are
    fetched by the client's row iterator as they are pulled.
    """
    job = client.query(
        raw_query, job_config=_query_job_config(use_legacy_sql, maximum_billing_tier)
    )
    row_iterator = job.result()
    for page in row_iterator.pages:
        yield [_row_to_dict(row) for row in page]


def is_update_available(client: bigquery.Client, table: TableHandle) -> bool:
    """
    True when the table has no active streaming buffer.

    Rows still in the streaming buffer cannot be updated or deleted. The
    metadata is fetched live on every call.
    """
    remote = client.get_table(table.reference)
    available = remote.streaming_buffer is None
    logger.debug(f"Table {table.full_name} update available: {available}")
    return available
