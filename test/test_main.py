"""Tests for main MCP server module."""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from google.api_core import exceptions
from mcp.server.fastmcp.exceptions import ToolError

from bigquery_facade import main
from bigquery_facade.catalog import CatalogCache, ColumnSpec, DatasetHandle, TableHandle
from bigquery_facade.errors import (
    PartialInsertFailure,
    SchemaRequiredError,
    TableNotFoundError,
    WarehouseConfigError,
)
from bigquery_facade.main import (
    BigQuerySessionContext,
    check_update_available,
    execute_sql_query,
    insert_rows,
    list_provisioned,
    provision_dataset,
    provision_table,
)


@pytest.fixture(autouse=True)
def fresh_session(monkeypatch):
    """Give every test its own server-global session."""
    session = BigQuerySessionContext()
    monkeypatch.setattr(main, "_default_session", session)
    return session


@pytest.fixture
def mock_facade():
    facade = Mock()
    facade.create_dataset = AsyncMock()
    facade.create_table = AsyncMock()
    facade.insert = AsyncMock()
    facade.query = AsyncMock()
    facade.update_available = AsyncMock()
    facade.catalog = CatalogCache()
    return facade


@pytest.fixture
def patched_facade(mock_facade):
    with patch("bigquery_facade.main._get_facade", AsyncMock(return_value=mock_facade)):
        yield mock_facade


class TestGetFacade:
    """Test cases for lazy facade connection."""

    @pytest.mark.asyncio
    async def test_connects_once(self, monkeypatch, fresh_session, mock_bq_client):
        monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "p1")
        monkeypatch.delenv("BIGQUERY_CREDENTIALS_JSON", raising=False)
        monkeypatch.delenv("BIGQUERY_KEY_FILE", raising=False)

        first = await main._get_facade()
        second = await main._get_facade()

        assert first is second
        assert fresh_session.facade is first
        assert first.config.project_id == "p1"
        assert mock_bq_client.list_datasets.call_count == 1

    @pytest.mark.asyncio
    async def test_missing_project_reported_as_not_configured(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)

        with pytest.raises(ToolError) as exc_info:
            await provision_dataset("d1")

        assert "BigQuery not configured" in str(exc_info.value)
        assert "GOOGLE_CLOUD_PROJECT" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_uses_lifespan_context(self, mock_facade):
        session = BigQuerySessionContext(facade=mock_facade)
        ctx = Mock()
        ctx.request_context.lifespan_context = session

        assert await main._get_facade(ctx) is mock_facade


class TestProvisionDataset:
    @pytest.mark.asyncio
    async def test_success(self, patched_facade):
        patched_facade.create_dataset.return_value = DatasetHandle(
            name="d1", reference=Mock(project="p1")
        )

        result = await provision_dataset("d1")

        assert "`p1.d1`" in result
        patched_facade.create_dataset.assert_awaited_once_with("d1")

    @pytest.mark.asyncio
    async def test_api_error(self, patched_facade):
        patched_facade.create_dataset.side_effect = exceptions.Forbidden("denied")

        with pytest.raises(ToolError) as exc_info:
            await provision_dataset("d1")

        assert "provision_dataset: BigQuery API error" in str(exc_info.value)


class TestProvisionTable:
    @pytest.mark.asyncio
    async def test_created_with_schema(self, patched_facade):
        patched_facade.create_table.return_value = TableHandle(
            dataset_name="d1",
            table_name="t1",
            reference=Mock(),
            schema=(ColumnSpec("id", "integer"),),
        )

        result = await provision_table("d1", "t1", "id:integer")

        assert "`d1.t1`" in result
        assert "**id** (`integer`)" in result
        patched_facade.create_table.assert_awaited_once_with("d1", "t1", "id:integer")

    @pytest.mark.asyncio
    async def test_schema_required(self, patched_facade):
        patched_facade.create_table.side_effect = SchemaRequiredError("d1", "t1")

        with pytest.raises(ToolError) as exc_info:
            await provision_table("d1", "t1")

        assert "no schema was given" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_invalid_schema(self, patched_facade):
        patched_facade.create_table.side_effect = ValueError("Unsupported type 'uuid'")

        with pytest.raises(ToolError) as exc_info:
            await provision_table("d1", "t1", "id:uuid")

        assert "provision_table: Unsupported type" in str(exc_info.value)


class TestInsertRows:
    @pytest.mark.asyncio
    async def test_success(self, patched_facade):
        patched_facade.insert.return_value = 2

        result = await insert_rows("d1", "t1", '[{"id": 1}, {"id": 2}]')

        assert "**Rows**: 2" in result
        patched_facade.insert.assert_awaited_once_with([{"id": 1}, {"id": 2}], "d1", "t1")

    @pytest.mark.asyncio
    async def test_invalid_json(self, patched_facade):
        with pytest.raises(ToolError) as exc_info:
            await insert_rows("d1", "t1", "[{")

        assert "not valid JSON" in str(exc_info.value)
        patched_facade.insert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_an_array_of_objects(self, patched_facade):
        with pytest.raises(ToolError) as exc_info:
            await insert_rows("d1", "t1", '{"id": 1}')

        assert "JSON array of objects" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_partial_failure_reported(self, patched_facade):
        patched_facade.insert.side_effect = PartialInsertFailure(
            "d1.t1", [{"index": 0, "errors": [{"message": "bad id"}]}]
        )

        with pytest.raises(ToolError) as exc_info:
            await insert_rows("d1", "t1", '[{"id": "x"}]')

        assert "bad id" in str(exc_info.value)


class TestExecuteSqlQuery:
    """Test cases for execute_sql_query tool."""

    @pytest.mark.asyncio
    async def test_success(self, patched_facade):
        patched_facade.query.return_value = [{"id": 1, "name": "Alice"}]

        result = await execute_sql_query("SELECT * FROM d1.t1")

        assert "id | name" in result
        assert "1 | Alice" in result
        patched_facade.query.assert_awaited_once_with(
            "SELECT * FROM d1.t1", use_legacy_sql=False, maximum_billing_tier=3
        )

    @pytest.mark.asyncio
    async def test_config_error(self, patched_facade):
        patched_facade.query.side_effect = WarehouseConfigError("Config missing")

        with pytest.raises(ToolError) as exc_info:
            await execute_sql_query("SELECT 1")

        assert "BigQuery not configured" in str(exc_info.value)
        assert "Config missing" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unexpected_exception(self, patched_facade):
        patched_facade.query.side_effect = Exception("Unexpected error")

        with pytest.raises(ToolError) as exc_info:
            await execute_sql_query("SELECT 1")

        assert "execute_sql_query: Unexpected error" in str(exc_info.value)


class TestCheckUpdateAvailable:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("available, text", [(True, "available"), (False, "streaming buffer")])
    async def test_status(self, patched_facade, available, text):
        patched_facade.update_available.return_value = available

        result = await check_update_available("d1", "t1")

        assert text in result
        patched_facade.update_available.assert_awaited_once_with("t1", "d1")

    @pytest.mark.asyncio
    async def test_unprovisioned(self, patched_facade):
        patched_facade.update_available.side_effect = TableNotFoundError("d1", "t1")

        with pytest.raises(ToolError) as exc_info:
            await check_update_available("d1", "t1")

        assert 'Table "t1" not found in "d1"' in str(exc_info.value)


class TestListProvisioned:
    @pytest.mark.asyncio
    async def test_not_connected(self):
        assert "Not connected yet" in await list_provisioned()

    @pytest.mark.asyncio
    async def test_lists_catalog(self, fresh_session, mock_facade):
        ref = Mock()
        mock_facade.catalog.put_dataset(DatasetHandle("d1", ref))
        mock_facade.catalog.put_dataset(DatasetHandle("d2", ref))
        mock_facade.catalog.put_table(TableHandle("d1", "t1", ref))
        fresh_session.facade = mock_facade

        result = await list_provisioned()

        assert "## `d1`" in result
        assert "- `t1`" in result
        assert "## `d2`" in result
        assert "*No tables provisioned.*" in result
