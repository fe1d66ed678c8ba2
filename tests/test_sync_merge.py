"""Tests for local-data and envelope merging."""

import pytest

from core.hash_manager import hash_json
from core.models import (
    CloudEnvelope,
    LocalData,
    MistakeLogEntry,
    ProfileSettings,
    RhythmPattern,
    Settings,
)
from core.sync_merge import (
    LOCAL_DATA_MERGE_POLICY,
    envelopes_equal,
    merge_envelopes,
    merge_local_data,
    merge_settings,
)


def fixed_clock(value):
    return lambda: value


class TestMergePolicy:
    """Tests for the field policy table."""

    def test_every_local_data_field_has_a_policy(self):
        assert set(LOCAL_DATA_MERGE_POLICY) == set(LocalData.model_fields)


class TestMergeLocalData:
    """Tests for merge_local_data."""

    def test_runs_unioned(self, make_local_data, make_run):
        primary = make_local_data(history=[make_run(id="r_a", timestamp=1)])
        secondary = make_local_data(history=[make_run(id="r_b", timestamp=2)])

        merged = merge_local_data(primary, secondary)
        assert [r.id for r in merged.history] == ["r_b", "r_a"]

    def test_profiles_and_devices_unioned(self, make_local_data):
        primary = make_local_data(profiles=["Tony", "Alice"], devices=["Magic Keyboard"])
        secondary = make_local_data(profiles=["Bob", "Tony"], devices=["Touchscreen"])

        merged = merge_local_data(primary, secondary)
        assert merged.profiles == ["Tony", "Alice", "Bob"]
        assert merged.devices == ["Magic Keyboard", "Touchscreen"]

    def test_selection_falls_back_to_first_merged_entry(self, make_local_data):
        """A primary selecting an unknown profile gets the first merged profile."""
        primary = make_local_data(profiles=["Tony"], current_profile="Ghost", current_device="Gone")
        secondary = make_local_data(profiles=["Bob"])

        merged = merge_local_data(primary, secondary)
        assert merged.current_profile == "Tony"
        assert merged.current_device == "Magic Keyboard"

    def test_primary_selection_kept(self, make_local_data):
        primary = make_local_data(profiles=["Tony", "Bob"], current_profile="Bob")
        secondary = make_local_data(current_profile="Tony")
        assert merge_local_data(primary, secondary).current_profile == "Bob"

    def test_empty_name_sets_still_give_a_selection(self, make_local_data):
        primary = make_local_data(profiles=[], devices=[], current_profile="", current_device="")
        secondary = make_local_data(profiles=[], devices=[], current_profile="", current_device="")

        merged = merge_local_data(primary, secondary)
        assert merged.current_profile
        assert merged.current_device

    def test_profile_settings_overlay(self, make_local_data):
        primary = make_local_data(profile_settings={"Tony": ProfileSettings(fingering=True)})
        secondary = make_local_data(
            profile_settings={
                "Tony": ProfileSettings(tonys_rhythm=True),
                "Bob": ProfileSettings(tonys_rhythm=True),
            }
        )
        merged = merge_local_data(primary, secondary)
        assert merged.profile_settings["Tony"] == ProfileSettings(fingering=True)
        assert merged.profile_settings["Bob"] == ProfileSettings(tonys_rhythm=True)

    def test_patterns_last_writer_wins(self, make_local_data, make_pattern):
        primary = make_local_data(finger_patterns=[make_pattern("p1", updated_at=100, name="old")])
        secondary = make_local_data(finger_patterns=[make_pattern("p1", updated_at=200, name="new")])

        merged = merge_local_data(primary, secondary)
        assert len(merged.finger_patterns) == 1
        assert merged.finger_patterns[0].updated_at == 200

    def test_rhythm_patterns_merged(self, make_local_data):
        rhythm = RhythmPattern(id="r1", name="pairs", groups_row1=[["a", "b"]], updated_at=5)
        primary = make_local_data(rhythm_patterns=None)
        secondary = make_local_data(rhythm_patterns=[rhythm])
        assert merge_local_data(primary, secondary).rhythm_patterns == [rhythm]

    def test_unused_patterns_stay_absent(self, make_local_data):
        """Neither side has used the feature: the field stays None."""
        primary = make_local_data(finger_patterns=None, rhythm_patterns=None)
        secondary = make_local_data(finger_patterns=None, rhythm_patterns=None)

        merged = merge_local_data(primary, secondary)
        assert merged.finger_patterns is None
        assert merged.rhythm_patterns is None

    def test_emptied_patterns_stay_empty(self, make_local_data):
        primary = make_local_data(finger_patterns=[])
        secondary = make_local_data(finger_patterns=None)
        assert merge_local_data(primary, secondary).finger_patterns == []

    def test_selected_pattern_ids_from_primary_verbatim(self, make_local_data):
        primary = make_local_data(selected_finger_pattern_id=None, selected_rhythm_pattern_id="r9")
        secondary = make_local_data(selected_finger_pattern_id="p1", selected_rhythm_pattern_id="r1")

        merged = merge_local_data(primary, secondary)
        assert merged.selected_finger_pattern_id is None
        assert merged.selected_rhythm_pattern_id == "r9"

    def test_other_fields_prefer_primary_then_secondary(self, make_local_data):
        primary = make_local_data(click_speed=None)
        secondary = make_local_data(click_speed={"bestByDurationMs": {"5000": 7.2}, "recent": []})
        assert merge_local_data(primary, secondary).click_speed == secondary.click_speed

        primary = make_local_data(click_speed={"bestByDurationMs": {}, "recent": []})
        assert merge_local_data(primary, secondary).click_speed == primary.click_speed

    def test_stored_null_does_not_erase_secondary_value(self, make_local_data):
        """A primary read back from storage carries explicit nulls."""
        stored = LocalData.model_validate(make_local_data().to_document())
        assert "click_speed" in stored.model_fields_set
        secondary = make_local_data(click_speed={"bestByDurationMs": {"5000": 7.2}, "recent": []})

        assert merge_local_data(stored, secondary).click_speed == secondary.click_speed

    def test_null_extra_key_falls_back_to_secondary(self):
        primary = LocalData.model_validate({"profiles": ["Tony"], "streak": None})
        secondary = LocalData.model_validate({"profiles": ["Tony"], "streak": 4})
        assert merge_local_data(primary, secondary).model_extra == {"streak": 4}

    def test_unknown_fields_carried_over(self):
        primary = LocalData.model_validate({"profiles": ["Tony"], "streak": 3})
        secondary = LocalData.model_validate({"profiles": ["Tony"], "streak": 1, "badges": ["x"]})

        merged = merge_local_data(primary, secondary)
        assert merged.model_extra == {"streak": 3, "badges": ["x"]}
        assert merged.to_document()["badges"] == ["x"]

    def test_inputs_not_mutated(self, make_local_data, make_run):
        primary = make_local_data(history=[make_run(id="r_a")], profiles=["Tony"])
        secondary = make_local_data(history=[make_run(id="r_b", timestamp=5)], profiles=["Bob"])
        before = (hash_json(primary), hash_json(secondary))

        merge_local_data(primary, secondary)
        assert (hash_json(primary), hash_json(secondary)) == before


class TestMergeSettings:
    """Tests for merge_settings."""

    def test_primary_values_win(self):
        primary = Settings(mode="flash", sound=False)
        secondary = Settings(mode="blank", voice=True)

        merged = merge_settings(primary, secondary)
        assert merged.mode == "flash"
        assert merged.sound is False
        assert merged.voice is False

    def test_optional_fields_backfilled_from_secondary(self):
        primary = Settings(world_records=None)
        secondary = Settings(world_records={"classic": 2.1})
        assert merge_settings(primary, secondary).world_records == {"classic": 2.1}

    def test_unknown_keys_overlaid(self):
        primary = Settings.model_validate({"theme": "dark"})
        secondary = Settings.model_validate({"theme": "light", "fontSize": 14})
        merged = merge_settings(primary, secondary)
        assert merged.model_extra == {"theme": "dark", "fontSize": 14}


class TestMergeEnvelopes:
    """Tests for merge_envelopes."""

    def test_disjoint_histories_scenario(self, make_envelope, make_run):
        """Local at 1000 and remote at 2000 with different runs."""
        run_a = make_run(id="r_a", timestamp=1_700_000_000_000)
        run_b = make_run(id="r_b", timestamp=1_700_000_500_000)
        local = make_envelope(1000, history=[run_a])
        remote = make_envelope(2000, history=[run_b])

        result = merge_envelopes(local, remote)

        assert result.did_merge is True
        assert [r.id for r in result.local_data.history] == ["r_b", "r_a"]
        assert result.updated_at > 2000

    def test_identical_envelopes_scenario(self, make_envelope, make_run):
        """Identical envelopes merge to a no-op with the same timestamp."""
        local = make_envelope(5000, history=[make_run(id="r_a")])
        remote = make_envelope(5000, history=[make_run(id="r_a")])

        result = merge_envelopes(local, remote, clock=fixed_clock(99_999))
        assert result.did_merge is False
        assert result.updated_at == 5000

    def test_idempotence(self, make_envelope, make_run, make_pattern):
        envelope = make_envelope(
            4242,
            history=[make_run(id="r_b", timestamp=20), make_run(id="r_a", timestamp=10)],
            finger_patterns=[make_pattern("p1", updated_at=7)],
        )
        result = merge_envelopes(envelope, envelope)

        assert result.did_merge is False
        assert result.updated_at == 4242
        assert hash_json(result.local_data) == hash_json(envelope.local_data)
        assert hash_json(result.settings) == hash_json(envelope.settings)

    def test_merging_merged_result_is_stable(self, make_envelope, make_run):
        local = make_envelope(1000, history=[make_run(id="r_a", timestamp=1)])
        remote = make_envelope(2000, history=[make_run(id="r_b", timestamp=2)])

        first = merge_envelopes(local, remote, clock=fixed_clock(3000)).to_envelope()
        second = merge_envelopes(first, first, clock=fixed_clock(4000))
        assert second.did_merge is False
        assert second.updated_at == 3000

    def test_commutative_convergence(self, make_envelope, make_run, make_pattern):
        mistakes = [MistakeLogEntry(target="a", typed="s")]
        a = make_envelope(
            1000,
            history=[make_run(id="r_1", timestamp=10), make_run(id="r_2", timestamp=20, note="hi")],
            profiles=["Tony", "Alice"],
            finger_patterns=[make_pattern("p1", updated_at=100), make_pattern("p2", updated_at=50)],
        )
        b = make_envelope(
            2000,
            history=[make_run(id="r_2", timestamp=20, mistake_log=mistakes), make_run(id="r_3", timestamp=30)],
            profiles=["Bob"],
            finger_patterns=[make_pattern("p1", updated_at=300, name="edited")],
        )

        ab = merge_envelopes(a, b, clock=fixed_clock(5000))
        ba = merge_envelopes(b, a, clock=fixed_clock(5000))

        assert hash_json(ab.local_data.history) == hash_json(ba.local_data.history)
        assert ab.local_data.finger_patterns == ba.local_data.finger_patterns
        assert set(ab.local_data.profiles) == set(ba.local_data.profiles)
        assert ab.local_data.profile_settings == ba.local_data.profile_settings
        assert ab.settings == ba.settings

        shared = next(r for r in ab.local_data.history if r.id == "r_2")
        assert shared.note == "hi"
        assert shared.mistake_log == mistakes

    def test_tie_favours_local(self, make_envelope):
        local = make_envelope(1000, settings=Settings(mode="flash"))
        remote = make_envelope(1000, settings=Settings(mode="blank"))
        assert merge_envelopes(local, remote).settings.mode == "flash"

    def test_fresher_remote_is_primary(self, make_envelope):
        local = make_envelope(1000, settings=Settings(mode="flash"))
        remote = make_envelope(2000, settings=Settings(mode="blank"))

        result = merge_envelopes(local, remote, clock=fixed_clock(9000))
        assert result.settings.mode == "blank"
        assert result.did_merge is False
        assert result.updated_at == 2000

    def test_changed_merge_dominates_skewed_clock(self, make_envelope, make_run):
        """A clock behind both inputs still yields a strictly newer timestamp."""
        local = make_envelope(1000, history=[make_run(id="r_a", timestamp=1)])
        remote = make_envelope(2000, history=[make_run(id="r_b", timestamp=2)])

        result = merge_envelopes(local, remote, clock=fixed_clock(500))
        assert result.did_merge is True
        assert result.updated_at == 2001

    def test_to_envelope(self, make_envelope):
        result = merge_envelopes(make_envelope(10), make_envelope(20))
        envelope = result.to_envelope()
        assert isinstance(envelope, CloudEnvelope)
        assert envelope.schema_version == 1
        assert envelope.updated_at == result.updated_at


class TestEnvelopesEqual:
    """Tests for envelopes_equal."""

    def test_ignores_timestamps(self, make_envelope):
        assert envelopes_equal(make_envelope(1), make_envelope(2))

    def test_detects_data_difference(self, make_envelope, make_run):
        assert not envelopes_equal(make_envelope(1), make_envelope(1, history=[make_run(id="r_x")]))


@pytest.mark.parametrize("local_ts,remote_ts", [(0, 0), (0, 10), (10, 0)])
def test_zero_timestamps_handled(make_envelope, local_ts, remote_ts):
    result = merge_envelopes(make_envelope(local_ts), make_envelope(remote_ts))
    assert result.did_merge is False
    assert result.updated_at == max(local_ts, remote_ts)
