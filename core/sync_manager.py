"""Bidirectional sync between the local replica and the remote store.

One sync pass:
- Load the local envelope and fetch the remote document
- Absent remote: push local to seed it
- Malformed remote: keep local as is (never overwrite valid data with it)
- Otherwise merge, save the result locally if it differs, and push it if
  the remote copy differs

Local edits made while a pass is merging (a run recorded on another
thread) are caught under the local store's write lock: the merge is redone
from the newer snapshot before saving, so they are never overwritten.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from core.cloud_envelope import envelope_to_document, parse_envelope
from core.local_store import LocalStore
from core.models import CloudEnvelope, Run
from core.remote_store import RemoteStore, RemoteStoreError, Unsubscribe
from core.run_identity import ensure_run_ids
from core.sync_merge import envelopes_equal, merge_envelopes
from utils.clock import now_ms
from utils.device_identity import DeviceIdentity, get_device_identity

log = logging.getLogger("alphatyper.sync_manager")


@dataclass
class SyncResult:
    """Result of a sync pass."""

    success: bool
    pushed: int = 0
    pulled: int = 0
    merged: int = 0
    skipped: bool = False
    error: str | None = None
    duration_ms: int = 0
    updated_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "pushed": self.pushed,
            "pulled": self.pulled,
            "merged": self.merged,
            "skipped": self.skipped,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "updated_at": self.updated_at,
        }


def _same_envelope(a: CloudEnvelope, b: CloudEnvelope) -> bool:
    return a.updated_at == b.updated_at and envelopes_equal(a, b)


def _run_ids(envelope: CloudEnvelope) -> set[str]:
    return {run.id for run in ensure_run_ids(envelope.local_data.history)}


class SyncManager:
    """Keeps this device's replica and the remote document converged.

    Conflict resolution lives in ``core.sync_merge``; this class only moves
    envelopes between the stores and decides which writes are needed.
    """

    def __init__(
        self,
        local_store: LocalStore,
        remote_store: RemoteStore,
        user_id: str,
        identity: DeviceIdentity | None = None,
        overwrite_malformed_remote: bool = False,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize sync manager.

        Args:
            local_store: Local replica storage
            remote_store: Remote document store
            user_id: Key of the user's remote document
            identity: This device's identity (loaded from local_store if None)
            overwrite_malformed_remote: Push local over a remote document that
                cannot be parsed instead of leaving it alone
            clock: Returns the current time in epoch ms

        Raises:
            ValueError: If user_id is empty
        """
        if not user_id:
            raise ValueError("user_id is required for sync")

        self.local = local_store
        self.remote = remote_store
        self.user_id = user_id
        self.identity = identity or get_device_identity(local_store)
        self.overwrite_malformed_remote = overwrite_malformed_remote
        self.clock = clock

        self._sync_lock = threading.Lock()
        self._unsubscribe: Unsubscribe | None = None

    def record_run(self, run: Run) -> CloudEnvelope:
        """Store a finished run, tagged with this device's identity."""
        update = {}
        if not run.device_id:
            update["device_id"] = self.identity.device_id
        if not run.device_label:
            update["device_label"] = self.identity.device_label
        if not run.platform:
            update["platform"] = self.identity.platform
        if update:
            run = run.model_copy(update=update)
        return self.local.append_run(run)

    def sync(self) -> SyncResult:
        """Pull the remote document and reconcile it with the local replica.

        Returns:
            SyncResult with sync statistics
        """
        return self._run_pass(fetch=True)

    def apply_remote(self, document: dict[str, Any] | None) -> SyncResult:
        """Reconcile with a document delivered by a subscription."""
        return self._run_pass(fetch=False, document=document)

    def start_listening(self) -> None:
        """Subscribe to remote changes and merge each one as it arrives."""
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self.remote.subscribe(self.user_id, self.apply_remote)
        log.info(f"Subscribed to remote changes for user {self.user_id}")

    def stop_listening(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            log.info("Unsubscribed from remote changes")

    def _run_pass(self, fetch: bool, document: dict[str, Any] | None = None) -> SyncResult:
        if not self._sync_lock.acquire(blocking=False):
            log.debug("Sync already in progress, skipping")
            return SyncResult(success=False, skipped=True, error="Sync already in progress")

        start_time = time.time()
        result = SyncResult(success=True)
        log.info(f"Starting sync for user {self.user_id}")

        try:
            if fetch:
                document = self.remote.get(self.user_id)
            self._reconcile(document, result)
        except RemoteStoreError as e:
            log.error(f"Sync failed: {e}")
            result.success = False
            result.error = str(e)

            error_str = str(e).lower()
            if "connection" in error_str or "timeout" in error_str:
                result.error += "\n\nHint: Check your internet connection and the remote server status."
            elif "authentication" in error_str or "password" in error_str:
                result.error += "\n\nHint: Check the remote store credentials in settings."
        finally:
            self._sync_lock.release()

        result.duration_ms = int((time.time() - start_time) * 1000)
        self.local.log_sync(
            machine_name=self.identity.device_label,
            pushed=result.pushed,
            pulled=result.pulled,
            merged=result.merged,
            duration_ms=result.duration_ms,
            error=result.error,
        )
        log.info(
            f"Sync finished: success={result.success}, pushed={result.pushed}, "
            f"pulled={result.pulled}, merged={result.merged}"
        )
        return result

    def _reconcile(self, document: dict[str, Any] | None, result: SyncResult) -> None:
        local = self.local.load()
        remote = parse_envelope(document)

        if remote is None:
            if document is not None and not self.overwrite_malformed_remote:
                log.warning("Remote document is malformed; keeping local data, not pushing")
                result.updated_at = local.updated_at
                return
            log.info("No usable remote data, pushing local snapshot")
            self.remote.set(self.user_id, envelope_to_document(local))
            result.pushed = 1
            result.updated_at = local.updated_at
            return

        merge = merge_envelopes(local, remote, clock=self.clock)

        with self.local.write_lock:
            current = self.local.load()
            if not _same_envelope(current, local):
                # A local edit landed while merging; redo the merge from it
                log.info("Local snapshot changed during sync, merging again")
                merge = merge_envelopes(current, remote, clock=self.clock)
            merged = merge.to_envelope()

            if not _same_envelope(merged, current):
                result.pulled = len(_run_ids(merged) - _run_ids(current))
                self.local.save_envelope(merged)
                log.debug(f"Saved merged snapshot locally ({result.pulled} new runs)")

        result.updated_at = merged.updated_at
        result.merged = 1 if merge.did_merge else 0

        if not _same_envelope(merged, remote):
            self.remote.set(self.user_id, envelope_to_document(merged))
            result.pushed = 1
            log.debug("Pushed merged snapshot to remote")
