"""
Tests for database client.
"""

from unittest.mock import AsyncMock, Mock, patch

import pytest

from shared.database import AsyncTableQueryBuilder, DatabaseClient
from shared.errors import ConfigError, RetryableError


@pytest.fixture
def mock_supabase_client():
    """Create a mock Supabase client."""
    client = Mock()
    client.table = Mock(return_value=Mock())
    return client


@pytest.fixture
def db_client(mock_supabase_client):
    """Create a database client with mocked Supabase."""
    with patch("shared.database.create_client", return_value=mock_supabase_client):
        return DatabaseClient(url="https://test.supabase.co", service_key="test_key")


def test_database_client_requires_credentials():
    with patch("shared.database.settings") as mock_settings:
        mock_settings.supabase_url = None
        mock_settings.supabase_service_key = None

        with pytest.raises(ConfigError, match="SUPABASE_URL and SUPABASE_SERVICE_KEY"):
            DatabaseClient()


def test_database_client_wraps_creation_errors():
    with patch("shared.database.create_client", side_effect=Exception("bad key")):
        with pytest.raises(ConfigError, match="Failed to initialize database client: bad key"):
            DatabaseClient(url="https://test.supabase.co", service_key="test_key")


@pytest.mark.asyncio
async def test_query_builder_chains_and_executes(db_client, mock_supabase_client):
    builder = mock_supabase_client.table.return_value
    for method in ("select", "update", "eq", "in_", "limit", "order"):
        getattr(builder, method).return_value = builder
    builder.execute.return_value = Mock(data=[{"id": "c1"}])

    result = await (
        db_client.table("composite_jobs")
        .update({"status": "stitching"})
        .eq("id", "c1")
        .in_("status", ["generating_clips"])
        .execute()
    )

    assert isinstance(db_client.table("composite_jobs"), AsyncTableQueryBuilder)
    assert result.data == [{"id": "c1"}]
    builder.in_.assert_called_once_with("status", ["generating_clips"])


@pytest.mark.asyncio
async def test_execute_retries_then_raises_retryable(db_client):
    failing = Mock(side_effect=Exception("connection reset"))

    with patch("shared.database.asyncio.sleep", new=AsyncMock()) as sleep:
        with pytest.raises(RetryableError, match="failed after 3 attempts"):
            await db_client._execute_sync(failing)

    assert failing.call_count == 3
    assert [c.args[0] for c in sleep.await_args_list] == [2, 4]


@pytest.mark.asyncio
async def test_health_check(db_client, mock_supabase_client):
    assert await db_client.health_check() is True

    mock_supabase_client.table.side_effect = Exception("down")
    assert await db_client.health_check() is False
