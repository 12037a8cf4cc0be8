from typing import List, Tuple

from ..schemas.portrait import SessionHighlights, UserPortrait

WEIGHT_DELTA_THRESHOLD = 0.1
MAX_WEIGHT_CHANGES = 6
PREVIEW_CHARS = 160


def _weight_deltas(before: UserPortrait, after: UserPortrait) -> List[Tuple[str, float]]:
    keys = set(before.preference_weights) | set(after.preference_weights)
    deltas = [
        (key, after.preference_weights.get(key, 0.0) - before.preference_weights.get(key, 0.0))
        for key in keys
    ]
    significant = [item for item in deltas if abs(item[1]) >= WEIGHT_DELTA_THRESHOLD]
    significant.sort(key=lambda item: (-abs(item[1]), item[0]))
    return significant[:MAX_WEIGHT_CHANGES]


def compute_highlights(before: UserPortrait, after: UserPortrait) -> SessionHighlights:
    summary_updated = after.summary.strip() != before.summary.strip()
    deltas = _weight_deltas(before, after)
    return SessionHighlights(
        summary_updated=summary_updated,
        summary_preview=after.summary[:PREVIEW_CHARS] if summary_updated else None,
        new_focus_areas=[area for area in after.focus_areas if area not in before.focus_areas],
        new_strategies=[item for item in after.helpful_strategies if item not in before.helpful_strategies],
        weight_ups=[(key, round(value, 4)) for key, value in deltas if value > 0],
        weight_downs=[(key, round(value, 4)) for key, value in deltas if value < 0],
    )
