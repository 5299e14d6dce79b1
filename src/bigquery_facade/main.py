import asyncio
import functools
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Optional

from google.api_core.exceptions import GoogleAPICallError
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from mcp.server.fastmcp.server import Context

from .config import WarehouseConfig
from .errors import WarehouseConfigError, WarehouseError
from .facade import WarehouseFacade
from .formatter import format_query_results

SERVICE_NAME = "bigquery"
MAX_RENDERED_ROWS = 200


@dataclass
class BigQuerySessionContext:
    """Server-global BigQuery state shared across MCP client sessions."""
    facade: Optional[WarehouseFacade] = field(default=None)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


_default_session = BigQuerySessionContext()


@asynccontextmanager
async def bigquery_session_lifespan(server: FastMCP) -> AsyncIterator[BigQuerySessionContext]:
    """
    Share one BigQuerySessionContext for the FastMCP server lifespan.

    The facade is connected lazily on the first tool call, so the server
    starts even when BigQuery is not configured yet.
    """
    yield _default_session


mcp = FastMCP(SERVICE_NAME, lifespan=bigquery_session_lifespan)


def _get_session(ctx: Optional[Context] = None) -> BigQuerySessionContext:
    if ctx is not None:
        try:
            lifespan_ctx = ctx.request_context.lifespan_context
            if isinstance(lifespan_ctx, BigQuerySessionContext):
                return lifespan_ctx
        except (AttributeError, TypeError, ValueError):
            pass
    return _default_session


async def _get_facade(ctx: Optional[Context] = None) -> WarehouseFacade:
    """Return the session's connected facade, connecting on first use."""
    session = _get_session(ctx)
    async with session.lock:
        if session.facade is None:
            facade = WarehouseFacade(SERVICE_NAME, WarehouseConfig.from_env())
            await facade.init()
            session.facade = facade
        return session.facade


def handle_tool_errors(tool_name):
    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            try:
                return await fn(*args, **kwargs)
            except ToolError:
                raise
            except WarehouseConfigError as e:
                raise ToolError(f"{tool_name}: BigQuery not configured - {e}") from e
            except (WarehouseError, ValueError) as e:
                raise ToolError(f"{tool_name}: {e}") from e
            except GoogleAPICallError as e:
                raise ToolError(f"{tool_name}: BigQuery API error - {e}") from e
            except Exception as e:
                raise ToolError(f"{tool_name}: Unexpected error - {e}") from e

        return wrapper

    return decorator


@mcp.tool()
@handle_tool_errors("provision_dataset")
async def provision_dataset(
    dataset_name: str,
    ctx: Optional[Context] = None,
) -> str:
    """
    Makes sure a BigQuery dataset exists, creating it if necessary.

    A dataset must be provisioned before any table inside it can be provisioned
    or written to. Calling this again for the same dataset is harmless.

    Args:
        dataset_name: Name of the dataset within the configured project.
    """
    facade = await _get_facade(ctx)
    handle = await facade.create_dataset(dataset_name)
    return f"# Dataset Ready\n\n**Dataset**: `{handle.reference.project}.{handle.name}`"


@mcp.tool()
@handle_tool_errors("provision_table")
async def provision_table(
    dataset_name: str,
    table_name: str,
    schema: Optional[str] = None,
    ctx: Optional[Context] = None,
) -> str:
    """
    Makes sure a table exists in an already provisioned dataset.

    If the table does not exist yet a schema is required, given as a
    comma-separated list of name:type pairs (e.g. `id:integer,name:string`).
    Valid types are string, integer, float, boolean and timestamp.
    An existing table is left untouched.

    Args:
        dataset_name: Dataset previously passed to `provision_dataset`.
        table_name: Name of the table.
        schema: Optional column list used only when the table has to be created.
    """
    facade = await _get_facade(ctx)
    handle = await facade.create_table(dataset_name, table_name, schema)
    lines = [f"# Table Ready\n\n**Table**: `{handle.full_name}`"]
    if handle.schema:
        lines.append("\n## Columns Created")
        lines.extend(f"- **{col.name}** (`{col.type}`)" for col in handle.schema)
    return "\n".join(lines)


@mcp.tool()
@handle_tool_errors("insert_rows")
async def insert_rows(
    dataset_name: str,
    table_name: str,
    rows_json: str,
    ctx: Optional[Context] = None,
) -> str:
    """
    Streams rows into a provisioned table.

    Rows are given as a JSON array of flat objects whose keys match the
    table's column names. Rows rejected by BigQuery are reported with their
    per-row errors; nothing is retried.

    Args:
        dataset_name: Dataset of the target table.
        table_name: Target table, provisioned with `provision_table`.
        rows_json: JSON array of row objects.
    """
    try:
        rows = json.loads(rows_json)
    except json.JSONDecodeError as e:
        raise ToolError(f"insert_rows: rows_json is not valid JSON - {e}") from e
    if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
        raise ToolError("insert_rows: rows_json must be a JSON array of objects.")

    facade = await _get_facade(ctx)
    inserted = await facade.insert(rows, dataset_name, table_name)
    return f"# Rows Inserted\n\n**Table**: `{dataset_name}.{table_name}`\n**Rows**: {inserted}"


@mcp.tool()
@handle_tool_errors("execute_sql_query")
async def execute_sql_query(
    sql: str,
    use_legacy_sql: bool = False,
    maximum_billing_tier: int = 3,
    ctx: Optional[Context] = None,
) -> str:
    """
    Executes a SQL query in the configured BigQuery project and returns the rows.

    Results are returned as a Markdown table. Only single-page results are
    supported; add a `LIMIT` when a query may return many rows.

    Args:
        sql: The complete SQL query string to execute.
        use_legacy_sql: Use BigQuery legacy SQL instead of GoogleSQL (default: False).
        maximum_billing_tier: Highest billing tier the query may use (default: 3).
    """
    facade = await _get_facade(ctx)
    rows = await facade.query(
        sql, use_legacy_sql=use_legacy_sql, maximum_billing_tier=maximum_billing_tier
    )
    return format_query_results(rows, max_rows=MAX_RENDERED_ROWS)


@mcp.tool()
@handle_tool_errors("check_update_available")
async def check_update_available(
    dataset_name: str,
    table_name: str,
    ctx: Optional[Context] = None,
) -> str:
    """
    Reports whether UPDATE/DELETE statements can currently run against a table.

    Rows that were recently streamed sit in a streaming buffer and cannot be
    modified until BigQuery flushes it. The check is live on every call.

    Args:
        dataset_name: Dataset of the table.
        table_name: Table provisioned with `provision_table`.
    """
    facade = await _get_facade(ctx)
    available = await facade.update_available(table_name, dataset_name)
    status = "available" if available else "blocked by an active streaming buffer"
    return f"# Update Availability\n\n**Table**: `{dataset_name}.{table_name}`\n**Status**: {status}"


@mcp.tool()
@handle_tool_errors("list_provisioned")
async def list_provisioned(ctx: Optional[Context] = None) -> str:
    """
    Lists the datasets and tables provisioned by this server process.

    Only provisioned tables can be written to or checked for updates.
    """
    session = _get_session(ctx)
    if session.facade is None:
        return "# Provisioned Objects\n\n*Not connected yet. Nothing provisioned.*"

    catalog = session.facade.catalog
    datasets = catalog.dataset_names()
    if not datasets:
        return "# Provisioned Objects\n\n*Nothing provisioned.*"

    tables = catalog.table_keys()
    lines = ["# Provisioned Objects", ""]
    for dataset_name in datasets:
        lines.append(f"## `{dataset_name}`")
        dataset_tables = [t for d, t in tables if d == dataset_name]
        if dataset_tables:
            lines.extend(f"- `{t}`" for t in dataset_tables)
        else:
            lines.append("- *No tables provisioned.*")
        lines.append("")
    return "\n".join(lines)


def main():
    """Entry point for the BigQuery MCP server."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
