import math
import pathlib
import sys
from datetime import datetime, timezone

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from serenely.portrait.merge import blend_weight, dedupe, merge_portrait, merge_summary  # noqa: E402
from serenely.schemas.portrait import EMPTY_SUMMARY, PortraitDelta, UserPortrait  # noqa: E402


def test_empty_delta_normalizes_lists():
    portrait = UserPortrait(
        summary="Steady week.",
        focus_areas=["sleep", "work", "sleep", "family", "health", "money", "friends"],
        helpful_strategies=["walk", "walk", "music"],
    )
    merged = merge_portrait(portrait, PortraitDelta())
    assert merged.focus_areas == dedupe(portrait.focus_areas)[:5]
    assert merged.helpful_strategies == ["walk", "music"]
    assert merged.summary == "Steady week."


def test_sentinel_summary_is_replaced_verbatim():
    merged = merge_portrait(UserPortrait.empty(), PortraitDelta(summary="Feels anxious before meetings."))
    assert merged.summary == "Feels anxious before meetings."


def test_replacement_is_truncated():
    merged = merge_portrait(UserPortrait(summary=EMPTY_SUMMARY), PortraitDelta(summary="x" * 1000))
    assert merged.summary == "x" * 800


def test_initial_session_phrase_counts_as_placeholder():
    assert merge_summary("Початкова сесія: мало даних", "Новий підсумок") == "Новий підсумок"
    assert merge_summary("INITIAL SESSION pending", "Fresh") == "Fresh"


def test_summary_accretion():
    merged = merge_portrait(UserPortrait(summary="A" * 480), PortraitDelta(summary="B" * 300))
    assert merged.summary == "A" * 480 + " " + "B" * 260
    assert len(merged.summary) <= 800


def test_duplicate_opening_is_dropped():
    current = "Lately: hello world, the user is sleeping better and walking more."
    merged = merge_portrait(UserPortrait(summary=current), PortraitDelta(summary="Hello World"))
    assert merged.summary == current


def test_blank_delta_summary_keeps_current_but_enforces_cap():
    merged = merge_portrait(UserPortrait(summary="y" * 900), PortraitDelta(summary="   "))
    assert merged.summary == "y" * 800


def test_caps_hold_for_large_deltas():
    portrait = UserPortrait(helpful_strategies=[f"s{i}" for i in range(6)], focus_areas=["a", "b", "c"])
    delta = PortraitDelta(
        new_strategies=["s1", "n1", "n2", "n3", "", "  "],
        focus_areas=["c", "d", "e", "f"],
        weight_updates={"x": 7.0, "y": -3.0},
    )
    merged = merge_portrait(portrait, delta)
    assert merged.helpful_strategies == ["s0", "s1", "s2", "s3", "s4", "s5", "n1", "n2"]
    assert merged.focus_areas == ["a", "b", "c", "d", "e"]
    assert all(0.0 <= value <= 1.0 for value in merged.preference_weights.values())


def test_weight_smoothing_from_default():
    merged = merge_portrait(UserPortrait.empty(), PortraitDelta(weight_updates={"breathing": 1.0}))
    assert math.isclose(merged.preference_weights["breathing"], 0.575)


def test_repeated_signal_converges_without_reaching_one():
    weight = 0.5
    for _ in range(100):
        weight = blend_weight(weight, 1.0)
    assert weight > 0.99
    assert weight < 1.0


def test_out_of_range_signal_is_clamped_after_blending():
    merged = merge_portrait(UserPortrait.empty(), PortraitDelta(weight_updates={"x": 2.0, "y": -1.0, "z": 4.0}))
    assert math.isclose(merged.preference_weights["x"], 0.725)
    assert math.isclose(merged.preference_weights["y"], 0.275)
    assert merged.preference_weights["z"] == 1.0


def test_non_finite_signal_is_ignored():
    portrait = UserPortrait(preference_weights={"tone_supportive": 0.4})
    merged = merge_portrait(portrait, PortraitDelta(weight_updates={"tone_supportive": float("nan"), "other": float("inf")}))
    assert merged.preference_weights == {"tone_supportive": 0.4}


def test_input_is_not_mutated_and_timestamp_is_set():
    portrait = UserPortrait(summary="Old", helpful_strategies=["walk"])
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    merged = merge_portrait(portrait, PortraitDelta(summary="New part", new_strategies=["music"]), now=now)
    assert portrait.helpful_strategies == ["walk"]
    assert portrait.summary == "Old"
    assert merged.last_updated == now
    assert merged.summary == "Old New part"
