"""PostgreSQL-backed remote document store.

Each user's envelope lives in one JSONB row of ``app_data``. Writes replace
the whole row and raise a ``NOTIFY`` so other devices listening on the
channel can pull the new document.
"""

import logging
import select
import threading
from contextlib import contextmanager
from typing import Any

try:
    import psycopg2
    import psycopg2.extensions
    import psycopg2.extras
    from psycopg2 import pool
except ImportError:
    psycopg2 = None
    pool = None

from core.remote_store import (
    DocumentCallback,
    RemoteConnectionError,
    RemoteStore,
    RemoteStoreConfigError,
    RemoteStoreError,
    Unsubscribe,
)

log = logging.getLogger("alphatyper.postgres_remote_store")

NOTIFY_CHANNEL = "app_data_changed"
VALID_SSLMODES = ("disable", "allow", "prefer", "require", "verify-ca", "verify-full")

# Seconds between checks of the stop flag while listening
LISTEN_POLL_SEC = 1.0


class PostgresRemoteStore(RemoteStore):
    """Remote store using psycopg2 with a small connection pool."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        sslmode: str = "require",
        min_connections: int = 1,
        max_connections: int = 5,
    ):
        """Initialize PostgreSQL remote store.

        Args:
            host: Database host address
            port: Database port
            database: Database name
            user: Database user
            password: Database password
            sslmode: SSL mode (disable, allow, prefer, require, verify-ca, verify-full)
            min_connections: Minimum number of connections in pool
            max_connections: Maximum number of connections in pool

        Raises:
            RemoteStoreConfigError: If the connection settings are invalid
            ImportError: If psycopg2 is not installed
        """
        missing = [name for name, value in (("host", host), ("database", database), ("user", user)) if not value]
        if missing:
            raise RemoteStoreConfigError(f"PostgreSQL settings missing: {', '.join(missing)}")
        if not 1 <= int(port) <= 65535:
            raise RemoteStoreConfigError(f"Invalid PostgreSQL port: {port}")
        if sslmode not in VALID_SSLMODES:
            raise RemoteStoreConfigError(f"Invalid sslmode: {sslmode}")
        if not 1 <= min_connections <= max_connections:
            raise RemoteStoreConfigError(
                f"Invalid pool size: min={min_connections}, max={max_connections}"
            )
        if psycopg2 is None:
            raise ImportError(
                "psycopg2 is not installed. Install it with: pip install psycopg2-binary"
            )

        self.host = host
        self.port = int(port)
        self.database = database
        self.user = user
        self.password = password
        self.sslmode = sslmode
        self.min_connections = min_connections
        self.max_connections = max_connections

        self._connection_pool = None
        self._listeners: list[tuple[threading.Thread, threading.Event]] = []

    def _connect_kwargs(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "sslmode": self.sslmode,
            "connect_timeout": 10,
        }

    def initialize(self) -> None:
        """Create the connection pool and the ``app_data`` table."""
        try:
            self._connection_pool = pool.SimpleConnectionPool(
                minconn=self.min_connections,
                maxconn=self.max_connections,
                **self._connect_kwargs(),
            )
            log.info(f"Created PostgreSQL connection pool: {self.host}:{self.port}/{self.database}")
        except psycopg2.Error as e:
            raise RemoteConnectionError(f"Failed to create connection pool: {e}") from e

        with self.get_connection() as conn:
            self._create_app_data_table(conn)
            conn.commit()

    @contextmanager
    def get_connection(self):
        """Get a database connection from the connection pool."""
        if self._connection_pool is None:
            raise RemoteStoreError("Store not initialized. Call initialize() first.")

        conn = self._connection_pool.getconn()
        try:
            yield conn
        except psycopg2.Error as e:
            conn.rollback()
            raise RemoteConnectionError(f"PostgreSQL operation failed: {e}") from e
        finally:
            self._connection_pool.putconn(conn)

    def close(self) -> None:
        """Stop listeners and close all pooled connections."""
        for thread, stop_event in self._listeners:
            stop_event.set()
            thread.join(timeout=5)
        self._listeners.clear()

        if self._connection_pool:
            self._connection_pool.closeall()
            self._connection_pool = None
            log.info("PostgreSQL connection pool closed")

    def _create_app_data_table(self, conn) -> None:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS app_data (
                user_id TEXT PRIMARY KEY,
                document JSONB NOT NULL,
                updated_at BIGINT NOT NULL DEFAULT 0
            )
        """)

    def get(self, user_id: str) -> dict[str, Any] | None:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT document FROM app_data WHERE user_id = %s", (user_id,))
            row = cursor.fetchone()
            conn.commit()
        if row is None:
            return None
        return row[0]

    def set(self, user_id: str, document: dict[str, Any]) -> None:
        updated_at = document.get("updatedAt") or 0
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO app_data (user_id, document, updated_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (user_id) DO UPDATE
                SET document = EXCLUDED.document, updated_at = EXCLUDED.updated_at
                """,
                (user_id, psycopg2.extras.Json(document), updated_at),
            )
            cursor.execute("SELECT pg_notify(%s, %s)", (NOTIFY_CHANNEL, user_id))
            conn.commit()
        log.debug(f"Stored remote document for {user_id} (updatedAt={updated_at})")

    def delete(self, user_id: str) -> None:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM app_data WHERE user_id = %s", (user_id,))
            cursor.execute("SELECT pg_notify(%s, %s)", (NOTIFY_CHANNEL, user_id))
            conn.commit()

    def subscribe(self, user_id: str, callback: DocumentCallback) -> Unsubscribe:
        """Listen for changes on a dedicated connection in a daemon thread."""
        try:
            conn = psycopg2.connect(**self._connect_kwargs())
        except psycopg2.Error as e:
            raise RemoteConnectionError(f"Failed to open listen connection: {e}") from e
        conn.set_isolation_level(psycopg2.extensions.ISOLATION_LEVEL_AUTOCOMMIT)
        conn.cursor().execute(f"LISTEN {NOTIFY_CHANNEL}")

        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._listen_loop,
            args=(conn, user_id, callback, stop_event),
            daemon=True,
        )
        thread.start()
        self._listeners.append((thread, stop_event))
        log.info(f"Listening for remote changes for {user_id}")

        def unsubscribe() -> None:
            stop_event.set()

        return unsubscribe

    def _listen_loop(self, conn, user_id: str, callback: DocumentCallback, stop_event: threading.Event) -> None:
        try:
            while not stop_event.is_set():
                ready, _, _ = select.select([conn], [], [], LISTEN_POLL_SEC)
                if not ready:
                    continue
                conn.poll()
                changed = False
                while conn.notifies:
                    notify = conn.notifies.pop(0)
                    if notify.payload == user_id:
                        changed = True
                if changed and not stop_event.is_set():
                    callback(self.get(user_id))
        except (psycopg2.Error, RemoteStoreError) as e:
            log.error(f"Remote listener for {user_id} stopped: {e}")
        finally:
            conn.close()
