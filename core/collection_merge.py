"""Merge strategies for the collections in a user's data.

Each collection shape has its own strategy:
- runs: append-only log, deduplicated by id, more complete copy wins
- profile/device names: union preserving first-seen order
- patterns: last writer wins by ``updated_at``
- profile settings: per-key overlay, primary wins

None of these functions mutate their inputs.
"""

from typing import TypeVar

from core.models import FingerPattern, ProfileSettings, RhythmPattern, Run
from core.run_identity import ensure_run_ids, stable_run_id

FALLBACK_SELECTION = "Default"

PatternT = TypeVar("PatternT", FingerPattern, RhythmPattern)


def _utf16_length(text: str | None) -> int:
    """Length in UTF-16 code units, as the browser clients measure strings."""
    return len((text or "").encode("utf-16-le", errors="surrogatepass")) // 2


def pick_better_run(a: Run | None, b: Run | None) -> Run | None:
    """Combine two copies of the same run, keeping the most detail.

    Starts from ``a``. The longer note and the longer timing log win.
    Mistake log and specialized settings are taken from ``b`` only when
    ``a`` has none; when both have one, ``a``'s is kept.
    """
    if a is None:
        return b
    if b is None:
        return a

    update = {}
    if _utf16_length(b.note) > _utf16_length(a.note):
        update["note"] = b.note
    if len(b.log or []) > len(a.log or []):
        update["log"] = b.log
    if not a.mistake_log and b.mistake_log:
        update["mistake_log"] = b.mistake_log
    if not a.specialized and b.specialized:
        update["specialized"] = b.specialized

    if not update:
        return a
    return a.model_copy(update=update)


def merge_runs(primary: list[Run], secondary: list[Run]) -> list[Run]:
    """Union two run histories.

    Args:
        primary: Runs from the fresher replica
        secondary: Runs from the other replica

    Returns:
        Deduplicated runs, newest first
    """
    by_id: dict[str, Run] = {}
    for run in [*ensure_run_ids(primary or []), *ensure_run_ids(secondary or [])]:
        run_id = run.id or stable_run_id(run)
        if run.id != run_id:
            run = run.model_copy(update={"id": run_id})
        existing = by_id.get(run_id)
        by_id[run_id] = pick_better_run(existing, run) if existing else run

    return sorted(by_id.values(), key=lambda r: r.timestamp or 0, reverse=True)


def unique_names(*name_lists: list[str] | None) -> list[str]:
    """Concatenate name lists, dropping empties and duplicates.

    First occurrence wins, so earlier lists keep their order at the front.
    """
    seen = set()
    result = []
    for names in name_lists:
        for name in names or []:
            if not name or name in seen:
                continue
            seen.add(name)
            result.append(name)
    return result


def resolve_selection(selected: str | None, merged: list[str]) -> str:
    """Keep a selection only if it is still in the merged set.

    Otherwise fall back to the first merged entry. With nothing to choose
    from at all, ``FALLBACK_SELECTION`` is used so the result is never empty.
    """
    if selected and selected in merged:
        return selected
    if merged:
        return merged[0]
    return FALLBACK_SELECTION


def merge_patterns_by_id(
    primary: list[PatternT] | None,
    secondary: list[PatternT] | None,
) -> list[PatternT] | None:
    """Last-writer-wins merge of pattern lists.

    A secondary copy replaces the primary one only when its ``updated_at``
    is strictly greater. When both lists are empty the original primary
    reference (or secondary, if primary is None) is returned unchanged.

    Returns:
        Patterns ordered by ``updated_at`` descending
    """
    a = primary or []
    b = secondary or []
    if not a and not b:
        return primary if primary is not None else secondary

    by_id: dict[str, PatternT] = {}
    for item in a:
        by_id[item.id] = item
    for item in b:
        existing = by_id.get(item.id)
        if existing is None or item.updated_at > existing.updated_at:
            by_id[item.id] = item

    return sorted(by_id.values(), key=lambda p: p.updated_at, reverse=True)


def merge_profile_settings(
    primary: dict[str, ProfileSettings] | None,
    secondary: dict[str, ProfileSettings] | None,
) -> dict[str, ProfileSettings]:
    """Overlay secondary's per-profile settings with primary's, whole entries.

    Primary's key order is kept; profiles only secondary knows are appended.
    """
    merged = dict(primary or {})
    for profile, settings in (secondary or {}).items():
        merged.setdefault(profile, settings)
    return merged
