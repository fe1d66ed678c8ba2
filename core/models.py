"""Pydantic models for AlphaTyper sync data structures.

Documents exchanged with the remote store and written to local persistence
use camelCase keys; Python attributes are snake_case. Unknown keys are kept
(``extra="allow"``) so fields written by newer clients survive a merge.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SCHEMA_VERSION = 1

# Newest-first cap on locally stored runs
MAX_HISTORY = 1000

GAME_MODES = ("classic", "blank", "flash", "guinness", "backwards", "spaces", "backwards-spaces")


class SyncModel(BaseModel):
    """Base model for synced documents."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_document(self) -> dict[str, Any]:
        """Dump to a JSON-safe dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class TimingLogEntry(SyncModel):
    """Per-character timing recorded during a run."""

    char: str = Field(..., description="Typed character")
    duration: float = Field(..., description="Time since previous character (ms)")
    total: float = Field(..., description="Elapsed time since run start (ms)")
    prev: str = Field(default="", description="Previous character")


class MistakeLogEntry(SyncModel):
    """A single mistyped character."""

    target: str = Field(..., description="Expected character")
    typed: str = Field(..., description="Character actually typed")


class SpecializedPracticeSettings(SyncModel):
    """Letter range used for specialized practice."""

    enabled: bool = Field(default=False, description="Whether range practice is on")
    start: str = Field(default="a", description="First letter of the range")
    end: str = Field(default="z", description="Last letter of the range")


class Run(SyncModel):
    """One completed practice run. Immutable once recorded."""

    id: str | None = Field(default=None, description="Stable run identifier")
    time: float = Field(..., description="Time to complete in seconds")
    mistakes: int = Field(default=0, description="Mistake count")
    mode: str = Field(default="classic", description=f"Game mode, one of {GAME_MODES}")
    profile: str = Field(default="", description="Profile name")
    device: str = Field(default="", description="Device (keyboard) name")
    device_id: str | None = Field(default=None, description="Installation identifier")
    device_label: str | None = Field(default=None, description="Human readable machine label")
    platform: str | None = Field(default=None, description="web, ios, android or unknown")
    blind: bool = Field(default=False, description="Blind mode flag")
    note: str = Field(default="", description="Free-text note")
    timestamp: int = Field(default=0, description="Creation timestamp (epoch ms)")
    log: list[TimingLogEntry] = Field(default_factory=list, description="Timing log")
    mistake_log: list[MistakeLogEntry] | None = Field(
        default=None, description="Mistyped characters"
    )
    specialized: SpecializedPracticeSettings | None = Field(
        default=None, description="Specialized practice range used for the run"
    )


class FingerPattern(SyncModel):
    """Custom character to finger mapping."""

    id: str = Field(..., description="Pattern identifier")
    name: str = Field(default="", description="Pattern name")
    map: dict[str, str] = Field(default_factory=dict, description="Character to finger code")
    created_at: int = Field(default=0, description="Creation timestamp (epoch ms)")
    updated_at: int = Field(default=0, description="Last edit timestamp (epoch ms)")


class RhythmPattern(SyncModel):
    """Custom rhythm grouping of the alphabet."""

    id: str = Field(..., description="Pattern identifier")
    name: str = Field(default="", description="Pattern name")
    groups_row1: list[list[str]] = Field(default_factory=list, description="First row groups")
    groups_row2: list[list[str]] = Field(default_factory=list, description="Second row groups")
    created_at: int = Field(default=0, description="Creation timestamp (epoch ms)")
    updated_at: int = Field(default=0, description="Last edit timestamp (epoch ms)")


class ProfileSettings(SyncModel):
    """Per-profile toggles."""

    tonys_rhythm: bool = Field(default=False, description="Rhythm grouping display")
    fingering: bool = Field(default=False, description="Finger hints display")


class LocalData(SyncModel):
    """Practice data for one user: history, names, patterns and selections."""

    profiles: list[str] = Field(default_factory=list, description="Profile names")
    devices: list[str] = Field(default_factory=list, description="Device names")
    current_profile: str = Field(default="", description="Selected profile")
    current_device: str = Field(default="", description="Selected device")
    history: list[Run] = Field(default_factory=list, description="Runs, newest first")
    profile_settings: dict[str, ProfileSettings] = Field(
        default_factory=dict, description="Settings keyed by profile name"
    )
    finger_patterns: list[FingerPattern] | None = Field(
        default=None, description="Custom finger patterns"
    )
    selected_finger_pattern_id: str | None = Field(
        default=None, description="Active finger pattern"
    )
    rhythm_patterns: list[RhythmPattern] | None = Field(
        default=None, description="Custom rhythm patterns"
    )
    selected_rhythm_pattern_id: str | None = Field(
        default=None, description="Active rhythm pattern"
    )
    click_speed: dict[str, Any] | None = Field(
        default=None, description="Click speed test results"
    )


class LeaderboardSettings(SyncModel):
    """Public leaderboard participation."""

    enabled: bool = Field(default=False, description="Submit runs to the leaderboard")
    display_name: str = Field(default="", description="Public display name")


class Settings(SyncModel):
    """User preferences shared across devices."""

    mode: str = Field(default="classic", description="Default game mode")
    blind: bool = Field(default=False, description="Blind mode")
    voice: bool = Field(default=False, description="Voice feedback")
    sound: bool = Field(default=True, description="Sound effects")
    specialized_practice: SpecializedPracticeSettings = Field(
        default_factory=SpecializedPracticeSettings,
        description="Specialized practice range",
    )
    world_records: dict[str, float] | None = Field(
        default=None, description="Benchmark times per mode"
    )
    world_record_links: dict[str, str] | None = Field(
        default=None, description="Source links for the benchmarks"
    )
    leaderboard: LeaderboardSettings | None = Field(
        default=None, description="Leaderboard participation"
    )


class CloudEnvelope(SyncModel):
    """Versioned, timestamped snapshot exchanged with the remote store."""

    schema_version: int = Field(default=SCHEMA_VERSION, description="Document layout version")
    updated_at: int = Field(default=0, description="Last change timestamp (epoch ms)")
    local_data: LocalData = Field(..., description="Practice data")
    settings: Settings = Field(..., description="User preferences")


DEFAULT_PROFILE = "Tony"
DEFAULT_DEVICES = ("Magic Keyboard", "Window Keyboard", "Touchscreen")


def default_local_data() -> LocalData:
    """Fresh data for a first launch."""
    return LocalData(
        profiles=[DEFAULT_PROFILE],
        devices=list(DEFAULT_DEVICES),
        current_profile=DEFAULT_PROFILE,
        current_device=DEFAULT_DEVICES[0],
        history=[],
        profile_settings={DEFAULT_PROFILE: ProfileSettings()},
        finger_patterns=[],
        selected_finger_pattern_id=None,
    )


def default_settings() -> Settings:
    return Settings()
