import pathlib
import sys

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from serenely.portrait.highlights import compute_highlights  # noqa: E402
from serenely.schemas.portrait import UserPortrait  # noqa: E402


def test_summary_change_and_preview():
    before = UserPortrait(summary="Old")
    after = UserPortrait(summary="N" * 300)
    highlights = compute_highlights(before, after)
    assert highlights.summary_updated is True
    assert highlights.summary_preview == "N" * 160


def test_unchanged_summary_has_no_preview():
    highlights = compute_highlights(UserPortrait(summary="Same "), UserPortrait(summary=" Same"))
    assert highlights.summary_updated is False
    assert highlights.summary_preview is None


def test_new_lists():
    before = UserPortrait(focus_areas=["sleep"], helpful_strategies=["walk"])
    after = UserPortrait(focus_areas=["sleep", "work"], helpful_strategies=["walk", "music"])
    highlights = compute_highlights(before, after)
    assert highlights.new_focus_areas == ["work"]
    assert highlights.new_strategies == ["music"]


def test_weight_deltas_threshold_order_and_cap():
    before = UserPortrait(preference_weights={"a": 0.5, "b": 0.5, "gone": 0.3})
    after = UserPortrait(
        preference_weights={"a": 0.55, "b": 0.2, "c": 0.9, "d": 0.4, "e": 0.35, "f": 0.25, "g": 0.2, "h": 0.15}
    )
    highlights = compute_highlights(before, after)
    changes = highlights.weight_ups + highlights.weight_downs
    keys = [key for key, _ in changes]
    assert "a" not in keys
    assert len(changes) == 6
    assert highlights.weight_ups[0] == ("c", 0.9)
    assert ("b", -0.3) in highlights.weight_downs
    assert ("gone", -0.3) in highlights.weight_downs
    assert "h" not in keys
