"""Local persistence of the user's snapshot.

The whole envelope (practice data, settings, ``updatedAt``) is stored as a
single JSON value and always replaced as a whole. A ``sync_log`` table keeps
a record of each sync pass.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from core.models import (
    MAX_HISTORY,
    SCHEMA_VERSION,
    CloudEnvelope,
    FingerPattern,
    LocalData,
    RhythmPattern,
    Run,
    Settings,
    default_local_data,
    default_settings,
)
from utils.clock import now_ms

log = logging.getLogger("alphatyper.local_store")

SNAPSHOT_KEY = "snapshot"

# Pattern kind -> (list field, selected id field) on LocalData
PATTERN_FIELDS = {
    "finger": ("finger_patterns", "selected_finger_pattern_id"),
    "rhythm": ("rhythm_patterns", "selected_rhythm_pattern_id"),
}


def upgrade_legacy_document(document: dict[str, Any]) -> dict[str, Any]:
    """Fill in fields that older app versions did not store.

    - profileSettings: derived per profile from the old global
      ``settings.tonysRhythm`` / ``settings.fingering`` toggles
    - settings.sound: defaults to on
    - settings.specializedPractice: defaults to the full alphabet, disabled
    - localData.fingerPatterns / selectedFingerPatternId: empty / null

    Returns a new dict; the input is not modified.
    """
    upgraded = dict(document)
    local_data = dict(upgraded["localData"]) if upgraded.get("localData") else None
    settings = dict(upgraded["settings"]) if upgraded.get("settings") else None

    if local_data is not None and local_data.get("profileSettings") is None:
        legacy = settings or {}
        local_data["profileSettings"] = {
            profile: {
                "tonysRhythm": bool(legacy.get("tonysRhythm", False)),
                "fingering": bool(legacy.get("fingering", False)),
            }
            for profile in local_data.get("profiles") or []
        }

    if settings is not None:
        if "sound" not in settings:
            settings["sound"] = True
        if settings.get("specializedPractice") is None:
            settings["specializedPractice"] = default_settings().specialized_practice.to_document()

    if local_data is not None:
        if local_data.get("fingerPatterns") is None:
            local_data["fingerPatterns"] = []
        if "selectedFingerPatternId" not in local_data:
            local_data["selectedFingerPatternId"] = None

    if local_data is not None:
        upgraded["localData"] = local_data
    if settings is not None:
        upgraded["settings"] = settings
    return upgraded


class LocalStore:
    """SQLite storage for this device's replica."""

    def __init__(self, db_path: Path):
        """Initialize local store with database at given path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        # Held across load-modify-save; sync passes take it too
        self.write_lock = threading.RLock()
        self._init_database()

    @contextmanager
    def _get_connection(self):
        conn = sqlite3.connect(self.db_path)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_database(self) -> None:
        """Create all tables if they don't exist."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS snapshot (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp INTEGER NOT NULL,
                    machine_name TEXT NOT NULL,
                    pushed INTEGER NOT NULL DEFAULT 0,
                    pulled INTEGER NOT NULL DEFAULT 0,
                    merged INTEGER NOT NULL DEFAULT 0,
                    duration_ms INTEGER NOT NULL DEFAULT 0,
                    error TEXT
                )
            """)

    # ========== Key/Value ==========

    def get_value(self, key: str) -> str | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM snapshot WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set_value(self, key: str, value: str) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO snapshot (key, value) VALUES (?, ?)",
                (key, value),
            )

    # ========== Snapshot ==========

    def has_snapshot(self) -> bool:
        return self.get_value(SNAPSHOT_KEY) is not None

    def load(self) -> CloudEnvelope:
        """Load this device's envelope.

        Missing or unreadable data yields defaults with ``updatedAt`` 0, so
        any remote copy is fresher and wins the primary role.

        Returns:
            CloudEnvelope for the local replica
        """
        raw = self.get_value(SNAPSHOT_KEY)
        if raw is None:
            return self._default_envelope()

        try:
            document = upgrade_legacy_document(json.loads(raw))
            return CloudEnvelope(
                schema_version=SCHEMA_VERSION,
                updated_at=int(document.get("updatedAt") or 0),
                local_data=LocalData.model_validate(document.get("localData") or default_local_data().to_document()),
                settings=Settings.model_validate(document.get("settings") or default_settings().to_document()),
            )
        except (json.JSONDecodeError, ValidationError, TypeError, ValueError) as e:
            log.error(f"Failed to load local snapshot, using defaults: {e}")
            return self._default_envelope()

    def _default_envelope(self) -> CloudEnvelope:
        return CloudEnvelope(
            schema_version=SCHEMA_VERSION,
            updated_at=0,
            local_data=default_local_data(),
            settings=default_settings(),
        )

    def save_envelope(self, envelope: CloudEnvelope) -> None:
        """Replace the stored snapshot with ``envelope`` as is."""
        document = {
            "localData": envelope.local_data.to_document(),
            "settings": envelope.settings.to_document(),
            "updatedAt": envelope.updated_at,
        }
        self.set_value(SNAPSHOT_KEY, json.dumps(document, ensure_ascii=False))
        log.debug(f"Saved local snapshot (updatedAt={envelope.updated_at})")

    def save_local_data(self, local_data: LocalData, settings: Settings | None = None) -> CloudEnvelope:
        """Store a local edit, stamping ``updatedAt`` to now.

        Args:
            local_data: New practice data
            settings: New settings, or None to keep the stored ones

        Returns:
            The envelope that was written
        """
        with self.write_lock:
            current = self.load()
            envelope = CloudEnvelope(
                schema_version=SCHEMA_VERSION,
                updated_at=max(now_ms(), current.updated_at),
                local_data=local_data,
                settings=settings if settings is not None else current.settings,
            )
            self.save_envelope(envelope)
        return envelope

    def save_settings(self, settings: Settings) -> CloudEnvelope:
        with self.write_lock:
            return self.save_local_data(self.load().local_data, settings)

    def append_run(self, run: Run) -> CloudEnvelope:
        """Record a finished run at the front of history, capped at MAX_HISTORY."""
        with self.write_lock:
            current = self.load()
            history = [run, *current.local_data.history][:MAX_HISTORY]
            local_data = current.local_data.model_copy(update={"history": history})
            return self.save_local_data(local_data)

    # ========== Patterns ==========

    def save_pattern(self, pattern: FingerPattern | RhythmPattern) -> CloudEnvelope:
        """Create or edit a finger or rhythm pattern.

        ``updated_at`` is stamped to now, and always past the stored copy's
        so the edit wins the last-writer-wins merge. An edit keeps the stored
        ``created_at``; a new pattern goes to the front of the list.
        """
        kind = "finger" if isinstance(pattern, FingerPattern) else "rhythm"
        list_field, _ = PATTERN_FIELDS[kind]

        with self.write_lock:
            current = self.load()
            patterns = list(getattr(current.local_data, list_field) or [])
            existing = next((p for p in patterns if p.id == pattern.id), None)

            now = now_ms()
            if existing is not None:
                stamped = pattern.model_copy(
                    update={
                        "created_at": existing.created_at,
                        "updated_at": max(now, existing.updated_at + 1),
                    }
                )
                patterns = [stamped if p.id == pattern.id else p for p in patterns]
            else:
                stamped = pattern.model_copy(update={"created_at": now, "updated_at": now})
                patterns = [stamped, *patterns]

            local_data = current.local_data.model_copy(update={list_field: patterns})
            log.debug(f"Saved {kind} pattern {pattern.id}")
            return self.save_local_data(local_data)

    def delete_pattern(self, kind: str, pattern_id: str) -> CloudEnvelope:
        """Remove a pattern, clearing the selection if it pointed at it.

        Args:
            kind: "finger" or "rhythm"
            pattern_id: Id of the pattern to remove

        Raises:
            ValueError: If kind is unknown
        """
        if kind not in PATTERN_FIELDS:
            raise ValueError(f"Unknown pattern kind: {kind}")
        list_field, selected_field = PATTERN_FIELDS[kind]

        with self.write_lock:
            current = self.load()
            patterns = [
                p for p in getattr(current.local_data, list_field) or [] if p.id != pattern_id
            ]
            update = {list_field: patterns}
            if getattr(current.local_data, selected_field) == pattern_id:
                update[selected_field] = None
            local_data = current.local_data.model_copy(update=update)
            return self.save_local_data(local_data)

    # ========== Sync log ==========

    def log_sync(
        self,
        machine_name: str,
        pushed: int = 0,
        pulled: int = 0,
        merged: int = 0,
        duration_ms: int = 0,
        error: str | None = None,
    ) -> None:
        """Record a sync pass."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_log (timestamp, machine_name, pushed, pulled, merged, duration_ms, error)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (now_ms(), machine_name, pushed, pulled, merged, duration_ms, error),
            )

    def get_sync_log(self, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent sync passes, newest first."""
        with self._get_connection() as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                "SELECT * FROM sync_log ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [dict(row) for row in rows]
