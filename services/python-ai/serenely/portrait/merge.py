"""
Portrait merge engine.

Folds a `PortraitDelta` into a `UserPortrait`. The rules are deterministic and
bounded so that a long run of noisy model output can never grow the portrait
past its caps or swing a stable preference in a single session:

  1. summary    - replace a placeholder, otherwise keep the head of the old
                  text and append the head of the new one (deduplicated)
  2. strategies - ordered union, capped at 8
  3. focus      - ordered union, capped at 5 (normalized even with no input)
  4. weights    - exponential smoothing, 0.85 history / 0.15 signal
  5. timestamp

`merge_portrait` is total: it never raises and clamps anything out of range.
"""

import math
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from ..schemas.portrait import (
    EMPTY_SUMMARY,
    FOCUS_AREAS_CAP,
    STRATEGIES_CAP,
    SUMMARY_MAX_CHARS,
    PortraitDelta,
    UserPortrait,
)

KEEP_OLD_CHARS = 480
APPEND_NEW_CHARS = 260
DUPLICATE_HEAD_CHARS = 80

HISTORY_WEIGHT = 0.85
SIGNAL_WEIGHT = 0.15
DEFAULT_WEIGHT = 0.5

INITIAL_SESSION_PHRASES = ("initial session", "початкова сесія")


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def dedupe(values: Iterable[str]) -> List[str]:
    seen = set()
    ordered: List[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


def _is_placeholder(summary: str) -> bool:
    if not summary or summary == EMPTY_SUMMARY.strip():
        return True
    lowered = summary.lower()
    return any(phrase in lowered for phrase in INITIAL_SESSION_PHRASES)


def merge_summary(current: str, incoming: str) -> str:
    old = (current or "").strip()
    new = (incoming or "").strip()
    if not new:
        return old[:SUMMARY_MAX_CHARS]
    if _is_placeholder(old):
        return new[:SUMMARY_MAX_CHARS]

    keep_old = old[:KEEP_OLD_CHARS]
    new_head = new[:DUPLICATE_HEAD_CHARS].lower()
    if new_head in keep_old.lower():
        # The model restated an opening the portrait already carries.
        return keep_old[:SUMMARY_MAX_CHARS]

    combined = f"{keep_old} {new[:APPEND_NEW_CHARS]}".strip()
    return combined[:SUMMARY_MAX_CHARS]


def blend_weight(old: Optional[float], signal: float) -> float:
    previous = DEFAULT_WEIGHT if old is None or not math.isfinite(old) else clamp01(old)
    return clamp01(previous * HISTORY_WEIGHT + signal * SIGNAL_WEIGHT)


def _clean(values: Iterable[str]) -> List[str]:
    return [value for value in values if isinstance(value, str) and value.strip()]


def merge_portrait(portrait: UserPortrait, delta: PortraitDelta, now: Optional[datetime] = None) -> UserPortrait:
    merged = portrait.model_copy(deep=True)

    if delta.summary is not None and delta.summary.strip():
        merged.summary = merge_summary(merged.summary, delta.summary)
    else:
        merged.summary = merged.summary[:SUMMARY_MAX_CHARS]

    merged.helpful_strategies = dedupe(merged.helpful_strategies + _clean(delta.new_strategies))[:STRATEGIES_CAP]

    incoming_focus = _clean(delta.focus_areas)
    if incoming_focus:
        merged.focus_areas = dedupe(merged.focus_areas + incoming_focus)[:FOCUS_AREAS_CAP]
    else:
        merged.focus_areas = dedupe(merged.focus_areas)[:FOCUS_AREAS_CAP]

    weights = dict(merged.preference_weights)
    for key, signal in delta.weight_updates.items():
        if signal is None or not math.isfinite(signal):
            continue
        weights[key] = blend_weight(weights.get(key), signal)
    merged.preference_weights = weights

    merged.last_updated = now or datetime.now(timezone.utc)
    return merged
