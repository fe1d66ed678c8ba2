"""Background sync handler for automatic periodic sync."""

import logging
import threading
import time
from typing import Callable

from core.sync_manager import SyncManager, SyncResult

log = logging.getLogger("alphatyper.sync_handler")


class SyncHandler:
    """Runs sync passes on a background thread at a fixed interval."""

    def __init__(
        self,
        sync_manager: SyncManager,
        enabled: bool = False,
        interval_sec: int = 300,
        on_completed: Callable[[SyncResult], None] | None = None,
        on_failed: Callable[[str], None] | None = None,
    ):
        """Initialize sync handler.

        Args:
            sync_manager: SyncManager performing each pass
            enabled: Whether auto-sync is enabled
            interval_sec: Sync interval in seconds
            on_completed: Called with the result of each successful pass
            on_failed: Called with the error message of each failed pass
        """
        self.sync_manager = sync_manager
        self.enabled = enabled
        self.interval_sec = interval_sec
        self.on_completed = on_completed
        self.on_failed = on_failed

        self.running = False
        self._stop_event = threading.Event()
        self.sync_thread: threading.Thread | None = None
        self._last_sync_time = 0.0

    @property
    def last_sync_time(self) -> float:
        return self._last_sync_time

    def start(self) -> None:
        """Start background sync thread."""
        if self.running:
            return

        self.running = True
        self._stop_event.clear()

        self.sync_thread = threading.Thread(target=self._run_sync_loop, daemon=True)
        self.sync_thread.start()

        log.info(f"Sync handler started: enabled={self.enabled}, interval={self.interval_sec}s")

    def stop(self) -> None:
        """Stop background sync thread."""
        if not self.running:
            return

        self.running = False
        self._stop_event.set()

        if self.sync_thread:
            self.sync_thread.join(timeout=5)

        log.info("Sync handler stopped")

    def sync_now(self) -> SyncResult:
        """Trigger an immediate sync pass."""
        log.info("Manual sync triggered")
        return self._perform_sync()

    def _run_sync_loop(self) -> None:
        """Background thread that syncs at configured interval."""
        while not self._stop_event.is_set():
            if self.enabled:
                self._perform_sync()

            self._stop_event.wait(self.interval_sec)

    def _perform_sync(self) -> SyncResult:
        result = self.sync_manager.sync()

        if result.skipped:
            return result

        if result.success:
            self._last_sync_time = time.time()
            if self.on_completed:
                self.on_completed(result)
        else:
            error = result.error or "Unknown error"
            if self.on_failed:
                self.on_failed(error)
        return result

    def update_settings(self, enabled: bool, interval_sec: int) -> None:
        """Update sync settings and restart if necessary.

        Args:
            enabled: New enabled state
            interval_sec: New interval in seconds
        """
        settings_changed = self.enabled != enabled or self.interval_sec != interval_sec

        self.enabled = enabled
        self.interval_sec = interval_sec

        if settings_changed and self.running:
            log.info(f"Sync settings changed: enabled={enabled}, interval={interval_sec}s")
            self.stop()
            if enabled:
                self.start()
        elif not self.running and enabled:
            self.start()
