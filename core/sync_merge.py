"""Reconcile two replicas of a user's data.

The fresher replica (by envelope ``updated_at``) is the primary. Its role
only decides tie-breaks and which selection survives; data present on
either side is never dropped.

Field policies for ``LocalData``:
- union: runs, profiles, devices
- selection: current profile/device, kept if still in the merged set
- overlay: per-profile settings, primary wins per key
- recency: finger and rhythm patterns, last writer wins
- primary: selected pattern ids, taken verbatim from primary
- prefer_primary: anything else, primary's value unless it has none

An explicit ``None`` on the primary counts as "no value", for known fields
and unknown extra keys alike: the secondary's value is kept. Stored
documents write every optional field, unset ones as null, so a null cannot
be told apart from "never set" and is not allowed to erase data. Clearing a
value across replicas therefore takes an empty value (``{}``, ``[]``,
``""``) rather than ``None``.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable

from core.collection_merge import (
    merge_patterns_by_id,
    merge_profile_settings,
    merge_runs,
    resolve_selection,
    unique_names,
)
from core.hash_manager import hash_json
from core.models import SCHEMA_VERSION, CloudEnvelope, LocalData, Settings
from utils.clock import now_ms

log = logging.getLogger("alphatyper.sync_merge")

UNION = "union"
SELECTION = "selection"
OVERLAY = "overlay"
RECENCY = "recency"
PRIMARY = "primary"
PREFER_PRIMARY = "prefer_primary"

LOCAL_DATA_MERGE_POLICY: dict[str, str] = {
    "history": UNION,
    "profiles": UNION,
    "devices": UNION,
    "current_profile": SELECTION,
    "current_device": SELECTION,
    "profile_settings": OVERLAY,
    "finger_patterns": RECENCY,
    "rhythm_patterns": RECENCY,
    "selected_finger_pattern_id": PRIMARY,
    "selected_rhythm_pattern_id": PRIMARY,
    "click_speed": PREFER_PRIMARY,
}

# Selection field -> merged collection it must belong to
SELECTION_SOURCES: dict[str, str] = {
    "current_profile": "profiles",
    "current_device": "devices",
}


def _prefer_primary(primary: Any, secondary: Any) -> Any:
    return primary if primary is not None else secondary


def _merge_union(field: str, primary: Any, secondary: Any) -> list:
    if field == "history":
        return merge_runs(primary, secondary)
    return unique_names(primary, secondary)


def _merge_extras(primary: dict | None, secondary: dict | None) -> dict[str, Any]:
    """Merge unknown fields: primary's value when it has one, keeping its key order."""
    primary = primary or {}
    secondary = secondary or {}
    merged = {key: _prefer_primary(value, secondary.get(key)) for key, value in primary.items()}
    for key, value in secondary.items():
        merged.setdefault(key, value)
    return merged


def merge_local_data(primary: LocalData, secondary: LocalData) -> LocalData:
    """Merge two replicas' practice data.

    Args:
        primary: Data from the fresher replica
        secondary: Data from the other replica

    Returns:
        New merged LocalData; inputs are left untouched
    """
    merged: dict[str, Any] = {}
    for field in LocalData.model_fields:
        policy = LOCAL_DATA_MERGE_POLICY.get(field, PREFER_PRIMARY)
        p_value = getattr(primary, field)
        s_value = getattr(secondary, field)

        if policy == UNION:
            merged[field] = _merge_union(field, p_value, s_value)
        elif policy == OVERLAY:
            merged[field] = merge_profile_settings(p_value, s_value)
        elif policy == RECENCY:
            merged[field] = merge_patterns_by_id(p_value, s_value)
        elif policy == PRIMARY:
            merged[field] = p_value
        elif policy == PREFER_PRIMARY:
            merged[field] = _prefer_primary(p_value, s_value)

    # Selections depend on the merged collections, so resolve them last
    for field, source in SELECTION_SOURCES.items():
        merged[field] = resolve_selection(getattr(primary, field), merged[source])

    extras = _merge_extras(primary.model_extra, secondary.model_extra)
    return LocalData(**merged, **extras)


def merge_settings(primary: Settings, secondary: Settings) -> Settings:
    """Merge preferences: primary's value for every field it has set."""
    merged = {
        field: _prefer_primary(getattr(primary, field), getattr(secondary, field))
        for field in Settings.model_fields
    }
    extras = _merge_extras(primary.model_extra, secondary.model_extra)
    return Settings(**merged, **extras)


def _snapshot_hash(local_data: LocalData, settings: Settings) -> str:
    return hash_json({"localData": local_data, "settings": settings})


def envelopes_equal(a: CloudEnvelope, b: CloudEnvelope) -> bool:
    """Whether two envelopes carry the same data, ignoring timestamps."""
    return hash_json(a.local_data) == hash_json(b.local_data) and hash_json(
        a.settings
    ) == hash_json(b.settings)


@dataclass
class MergeResult:
    """Outcome of merging two envelopes."""

    updated_at: int
    local_data: LocalData
    settings: Settings
    did_merge: bool

    def to_envelope(self) -> CloudEnvelope:
        return CloudEnvelope(
            schema_version=SCHEMA_VERSION,
            updated_at=self.updated_at,
            local_data=self.local_data,
            settings=self.settings,
        )


def merge_envelopes(
    local: CloudEnvelope,
    remote: CloudEnvelope,
    clock: Callable[[], int] = now_ms,
) -> MergeResult:
    """Merge the local and remote envelopes.

    The envelope with the greater or equal ``updated_at`` is primary; on a
    tie the local one is, since it belongs to the device in use.

    If the merged data differs from the primary's, ``updated_at`` is set to
    the current time (and at least one past both inputs) so the result is
    the fresher side in the next comparison. Otherwise it is the larger of
    the two input timestamps, so merging an already merged pair is a no-op.

    Args:
        local: Envelope from this device
        remote: Envelope from the remote store
        clock: Returns the current time in epoch ms

    Returns:
        MergeResult with ``did_merge`` telling whether a write is needed
    """
    local_updated = local.updated_at or 0
    remote_updated = remote.updated_at or 0
    local_is_primary = local_updated >= remote_updated
    primary, secondary = (local, remote) if local_is_primary else (remote, local)

    merged_settings = merge_settings(primary.settings, secondary.settings)
    merged_local_data = merge_local_data(primary.local_data, secondary.local_data)

    primary_hash = _snapshot_hash(primary.local_data, primary.settings)
    merged_hash = _snapshot_hash(merged_local_data, merged_settings)
    did_merge = primary_hash != merged_hash

    base_updated_at = max(local_updated, remote_updated)
    if did_merge:
        updated_at = max(clock(), base_updated_at + 1)
    else:
        updated_at = base_updated_at

    log.debug(
        f"Merged envelopes: primary={'local' if local_is_primary else 'remote'}, "
        f"did_merge={did_merge}, updated_at={updated_at}"
    )
    return MergeResult(
        updated_at=updated_at,
        local_data=merged_local_data,
        settings=merged_settings,
        did_merge=did_merge,
    )
