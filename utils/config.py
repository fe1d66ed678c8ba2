"""Configuration management for AlphaTyper sync."""

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AppSettings(BaseModel):
    """Application settings with validation."""

    # Sync settings
    sync_enabled: bool = Field(default=False, description="Enable automatic background sync")
    sync_interval_sec: int = Field(
        default=300, ge=30, description="Seconds between background sync passes"
    )
    remote_backend: str = Field(
        default="memory", description="Remote store backend (memory or postgres)"
    )
    user_id: str = Field(default="", description="Account identifier used as remote document key")
    overwrite_malformed_remote: bool = Field(
        default=False,
        description="Replace a malformed remote document with the local snapshot",
    )

    # PostgreSQL connection
    postgres_host: str = Field(default="", description="PostgreSQL host")
    postgres_port: int = Field(default=5432, ge=1, le=65535, description="PostgreSQL port")
    postgres_database: str = Field(default="alphatyper", description="PostgreSQL database name")
    postgres_user: str = Field(default="", description="PostgreSQL user")
    postgres_password: str = Field(default="", description="PostgreSQL password")
    postgres_sslmode: str = Field(default="require", description="PostgreSQL SSL mode")

    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    @field_validator("remote_backend")
    @classmethod
    def validate_remote_backend(cls, v):
        if v not in ("memory", "postgres"):
            raise ValueError(f"remote_backend must be 'memory' or 'postgres', got {v!r}")
        return v

    @field_validator("postgres_sslmode")
    @classmethod
    def validate_sslmode(cls, v):
        allowed = ("disable", "allow", "prefer", "require", "verify-ca", "verify-full")
        if v not in allowed:
            raise ValueError(f"postgres_sslmode must be one of {allowed}, got {v!r}")
        return v


class Config:
    """Configuration manager using SQLite for persistence with Pydantic validation."""

    def __init__(self, db_path: Path):
        """Initialize config with database connection.

        Args:
            db_path: Path to SQLite database
        """
        self.db_path = db_path
        self._init_settings_table()
        self._ensure_defaults()

    @contextmanager
    def _get_connection(self):
        conn = sqlite3.connect(self.db_path)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_settings_table(self) -> None:
        """Create settings table if not exists."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

    def _ensure_defaults(self) -> None:
        """Ensure all default settings exist in database."""
        defaults = AppSettings().model_dump()

        with self._get_connection() as conn:
            for key, value in defaults.items():
                conn.execute(
                    """
                    INSERT OR IGNORE INTO settings (key, value)
                    VALUES (?, ?)
                """,
                    (key, self._serialize_value(value)),
                )

    def _serialize_value(self, value: Any) -> str:
        """Convert value to string for storage."""
        if isinstance(value, bool):
            return "True" if value else "False"
        if isinstance(value, (list, dict)):
            return json.dumps(value)
        return str(value)

    def _simple_parse(self, value: str) -> Any:
        """Simple fallback parsing without pydantic."""
        # Try JSON first (for lists/dicts)
        if value.startswith("[") or value.startswith("{"):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False

        return value

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        """Get configuration value.

        Values of known settings are validated through AppSettings, so a
        numeric-looking password or user id comes back as a string.

        Args:
            key: Setting key
            default: Default value if not found

        Returns:
            Setting value
        """
        with self._get_connection() as conn:
            result = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if result:
            raw_value = result[0]
            if key in AppSettings.model_fields:
                annotation = AppSettings.model_fields[key].annotation
                parsed = raw_value if annotation is str else self._simple_parse(raw_value)
                try:
                    return getattr(AppSettings(**{key: parsed}), key)
                except ValueError:
                    return parsed
            return self._simple_parse(raw_value)
        if default is not None:
            return default
        if key in AppSettings.model_fields:
            return getattr(AppSettings(), key)
        return None

    def get_int(self, key: str, default: Optional[int] = None) -> int:
        """Get integer configuration value."""
        value = self.get(key, default)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        try:
            return int(value)
        except (ValueError, TypeError):
            if key in AppSettings.model_fields:
                return getattr(AppSettings(), key)
            return default if default is not None else 0

    def get_bool(self, key: str, default: Optional[bool] = None) -> bool:
        """Get boolean configuration value."""
        value = self.get(key, default)
        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return bool(value)
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes", "on")
        return bool(value) if value else False

    def set(self, key: str, value: Any) -> None:
        """Set configuration value with pydantic validation.

        Args:
            key: Setting key
            value: Setting value

        Raises:
            ValueError: If value fails validation
        """
        if key in AppSettings.model_fields:
            try:
                validated = AppSettings(**{key: value})
                value = getattr(validated, key)
            except ValueError as e:
                raise ValueError(f"Invalid value for {key}: {e}") from e

        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO settings (key, value)
                VALUES (?, ?)
            """,
                (key, self._serialize_value(value)),
            )

    def get_all(self) -> dict[str, Any]:
        """Get all settings as dictionary."""
        with self._get_connection() as conn:
            rows = conn.execute("SELECT key FROM settings").fetchall()
        return {row[0]: self.get(row[0]) for row in rows}

    def app_settings(self) -> AppSettings:
        """All known settings as a validated AppSettings."""
        values = self.get_all()
        return AppSettings(**{k: v for k, v in values.items() if k in AppSettings.model_fields})

    def get_list(self, key: str, default: Optional[List[str]] = None) -> List[str]:
        """Get list configuration value from comma-separated string.

        Args:
            key: Setting key
            default: Default value if not found

        Returns:
            List of strings
        """
        value = self.get(key, default)
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            if value.strip():
                return [item.strip() for item in value.split(",") if item.strip()]
            return []
        if default is not None:
            return default
        return []

    def set_list(self, key: str, value: List[str]) -> None:
        """Set configuration value as comma-separated string.

        Args:
            key: Setting key
            value: List of strings to store
        """
        self.set(key, ",".join(str(v) for v in value))
