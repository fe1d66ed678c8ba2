"""Remote document store abstraction for AlphaTyper.

The remote store holds one JSON document per user. Writes always replace
the whole document. Backends must implement this interface so the sync
manager can stay transport agnostic.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable

log = logging.getLogger("alphatyper.remote_store")

DocumentCallback = Callable[[dict[str, Any] | None], None]
Unsubscribe = Callable[[], None]


class RemoteStore(ABC):
    """Abstract base class for remote document stores."""

    @abstractmethod
    def get(self, user_id: str) -> dict[str, Any] | None:
        """Fetch the user's document.

        Args:
            user_id: User identifier

        Returns:
            Decoded document, or None if the user has none
        """
        pass

    @abstractmethod
    def set(self, user_id: str, document: dict[str, Any]) -> None:
        """Replace the user's document.

        Args:
            user_id: User identifier
            document: Complete document; no partial writes
        """
        pass

    @abstractmethod
    def delete(self, user_id: str) -> None:
        """Remove the user's document."""
        pass

    @abstractmethod
    def subscribe(self, user_id: str, callback: DocumentCallback) -> Unsubscribe:
        """Get notified when the user's document changes.

        Args:
            user_id: User identifier
            callback: Called with the new document (None after deletion)

        Returns:
            Function that cancels the subscription
        """
        pass

    def close(self) -> None:
        """Release connections held by the store."""
        pass


class InMemoryRemoteStore(RemoteStore):
    """Dict-backed store for tests and offline use.

    Documents are deep-copied on the way in and out, like a real transport.
    Subscribers are called synchronously after each write.
    """

    def __init__(self):
        self._documents: dict[str, dict[str, Any]] = {}
        self._subscribers: dict[str, list[DocumentCallback]] = {}
        self._lock = threading.Lock()
        self.write_count = 0

    def get(self, user_id: str) -> dict[str, Any] | None:
        with self._lock:
            document = self._documents.get(user_id)
            return copy.deepcopy(document) if document is not None else None

    def set(self, user_id: str, document: dict[str, Any]) -> None:
        with self._lock:
            self._documents[user_id] = copy.deepcopy(document)
            self.write_count += 1
        log.debug(f"Stored document for {user_id}")
        self._notify(user_id)

    def delete(self, user_id: str) -> None:
        with self._lock:
            self._documents.pop(user_id, None)
        self._notify(user_id)

    def subscribe(self, user_id: str, callback: DocumentCallback) -> Unsubscribe:
        with self._lock:
            self._subscribers.setdefault(user_id, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(user_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def _notify(self, user_id: str) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(user_id, []))
        for callback in callbacks:
            callback(self.get(user_id))


class RemoteStoreError(Exception):
    """Base exception for remote store errors."""

    pass


class RemoteStoreConfigError(RemoteStoreError):
    """Exception raised when a remote store is misconfigured."""

    pass


class RemoteConnectionError(RemoteStoreError):
    """Exception raised when the remote store cannot be reached."""

    pass


def create_remote_store(settings) -> RemoteStore:
    """Build and initialize the remote store selected in settings.

    Args:
        settings: AppSettings instance

    Returns:
        Ready to use RemoteStore

    Raises:
        RemoteStoreConfigError: If the backend settings are invalid
    """
    if settings.remote_backend == "memory":
        return InMemoryRemoteStore()
    if settings.remote_backend == "postgres":
        from core.postgres_remote_store import PostgresRemoteStore

        store = PostgresRemoteStore(
            host=settings.postgres_host,
            port=settings.postgres_port,
            database=settings.postgres_database,
            user=settings.postgres_user,
            password=settings.postgres_password,
            sslmode=settings.postgres_sslmode,
        )
        store.initialize()
        return store
    raise RemoteStoreConfigError(f"Unknown remote backend: {settings.remote_backend}")
