"""Tests for PostgresRemoteStore with psycopg2 mocked out."""

from unittest.mock import MagicMock, patch

import pytest

from core.postgres_remote_store import NOTIFY_CHANNEL, PostgresRemoteStore
from core.remote_store import RemoteStoreConfigError, RemoteStoreError


def make_store(**overrides):
    kwargs = {
        "host": "db.example.com",
        "port": 5432,
        "database": "alphatyper",
        "user": "sync",
        "password": "secret",
    }
    kwargs.update(overrides)
    return PostgresRemoteStore(**kwargs)


@pytest.fixture
def pooled_store():
    """Store whose connection pool hands out a single mocked connection."""
    with patch("core.postgres_remote_store.pool.SimpleConnectionPool") as pool_class:
        conn = MagicMock()
        cursor = MagicMock()
        conn.cursor.return_value = cursor
        pool_class.return_value.getconn.return_value = conn

        store = make_store()
        store.initialize()
        yield store, pool_class, conn, cursor


class TestConfiguration:
    """Construction-time validation."""

    def test_valid_configuration(self):
        store = make_store()
        assert store.host == "db.example.com"
        assert store.port == 5432
        assert store.sslmode == "require"

    @pytest.mark.parametrize("field", ["host", "database", "user"])
    def test_missing_required_field(self, field):
        with pytest.raises(RemoteStoreConfigError, match=field):
            make_store(**{field: ""})

    @pytest.mark.parametrize("port", [0, 70000])
    def test_invalid_port(self, port):
        with pytest.raises(RemoteStoreConfigError, match="port"):
            make_store(port=port)

    def test_invalid_sslmode(self):
        with pytest.raises(RemoteStoreConfigError, match="sslmode"):
            make_store(sslmode="sometimes")

    def test_invalid_pool_size(self):
        with pytest.raises(RemoteStoreConfigError, match="pool"):
            make_store(min_connections=5, max_connections=2)

    def test_use_before_initialize(self):
        with pytest.raises(RemoteStoreError, match="not initialized"):
            make_store().get("user-1")


class TestOperations:
    """Queries issued against the pooled connection."""

    def test_initialize_creates_table(self, pooled_store):
        store, pool_class, conn, cursor = pooled_store

        pool_class.assert_called_once()
        assert pool_class.call_args.kwargs["host"] == "db.example.com"
        sql = cursor.execute.call_args_list[0].args[0]
        assert "CREATE TABLE IF NOT EXISTS app_data" in sql
        conn.commit.assert_called()

    def test_get_returns_document(self, pooled_store):
        store, _, conn, cursor = pooled_store
        cursor.fetchone.return_value = ({"updatedAt": 5},)

        assert store.get("user-1") == {"updatedAt": 5}
        assert cursor.execute.call_args.args[1] == ("user-1",)

    def test_get_missing_returns_none(self, pooled_store):
        store, _, _, cursor = pooled_store
        cursor.fetchone.return_value = None
        assert store.get("user-1") is None

    def test_set_upserts_and_notifies(self, pooled_store):
        store, _, conn, cursor = pooled_store
        cursor.execute.reset_mock()

        store.set("user-1", {"updatedAt": 77, "localData": {}, "settings": {}})

        upsert_sql, upsert_params = cursor.execute.call_args_list[0].args
        assert "ON CONFLICT (user_id) DO UPDATE" in upsert_sql
        assert upsert_params[0] == "user-1"
        assert upsert_params[2] == 77
        notify_params = cursor.execute.call_args_list[1].args[1]
        assert notify_params == (NOTIFY_CHANNEL, "user-1")
        conn.commit.assert_called()

    def test_delete(self, pooled_store):
        store, _, _, cursor = pooled_store
        cursor.execute.reset_mock()

        store.delete("user-1")
        assert "DELETE FROM app_data" in cursor.execute.call_args_list[0].args[0]

    def test_connection_returned_to_pool(self, pooled_store):
        store, pool_class, conn, cursor = pooled_store
        cursor.fetchone.return_value = None

        store.get("user-1")
        pool_class.return_value.putconn.assert_called_with(conn)

    def test_close(self, pooled_store):
        store, pool_class, _, _ = pooled_store
        store.close()
        pool_class.return_value.closeall.assert_called_once()
