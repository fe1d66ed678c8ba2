"""Shared test fixtures for AlphaTyper sync tests."""

import tempfile
from pathlib import Path

import pytest

from core.models import (
    CloudEnvelope,
    FingerPattern,
    LocalData,
    ProfileSettings,
    Run,
    Settings,
    TimingLogEntry,
)


@pytest.fixture
def temp_db_path():
    """Create a temporary database path and clean up afterwards."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        yield db_path


def _timing_log(length: int) -> list[TimingLogEntry]:
    letters = "abcdefghijklmnopqrstuvwxyz"
    return [
        TimingLogEntry(
            char=letters[i % 26],
            duration=100.0,
            total=100.0 * (i + 1),
            prev=letters[i % 26 - 1] if i else "",
        )
        for i in range(length)
    ]


@pytest.fixture
def make_run():
    """Factory for runs with sensible defaults."""

    def _make_run(timestamp: int = 1_700_000_000_000, log_length: int = 3, **overrides) -> Run:
        fields = {
            "time": 4.25,
            "mistakes": 1,
            "mode": "classic",
            "profile": "Tony",
            "device": "Magic Keyboard",
            "blind": False,
            "note": "",
            "timestamp": timestamp,
            "log": _timing_log(log_length),
        }
        fields.update(overrides)
        return Run(**fields)

    return _make_run


@pytest.fixture
def make_pattern():
    """Factory for finger patterns."""

    def _make_pattern(pattern_id: str, updated_at: int, name: str = "Pattern") -> FingerPattern:
        return FingerPattern(
            id=pattern_id,
            name=name,
            map={"a": "L5", "b": "R1"},
            created_at=1,
            updated_at=updated_at,
        )

    return _make_pattern


@pytest.fixture
def make_local_data():
    """Factory for practice data with one profile and one device."""

    def _make_local_data(history=None, **overrides) -> LocalData:
        fields = {
            "profiles": ["Tony"],
            "devices": ["Magic Keyboard"],
            "current_profile": "Tony",
            "current_device": "Magic Keyboard",
            "history": history or [],
            "profile_settings": {"Tony": ProfileSettings()},
            "finger_patterns": [],
            "selected_finger_pattern_id": None,
        }
        fields.update(overrides)
        return LocalData(**fields)

    return _make_local_data


@pytest.fixture
def make_envelope(make_local_data):
    """Factory for envelopes."""

    def _make_envelope(updated_at: int, history=None, settings: Settings | None = None, **data) -> CloudEnvelope:
        return CloudEnvelope(
            updated_at=updated_at,
            local_data=make_local_data(history=history, **data),
            settings=settings or Settings(),
        )

    return _make_envelope
