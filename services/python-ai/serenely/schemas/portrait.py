from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

SUMMARY_MAX_CHARS = 800
FOCUS_AREAS_CAP = 5
STRATEGIES_CAP = 8

EMPTY_SUMMARY = "Initial session: not enough information yet."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStats(BaseModel):
    total_suggested: int = 0
    completed: int = 0
    skipped: int = 0
    usefulness_high: int = 0
    usefulness_medium: int = 0
    usefulness_low: int = 0


class UserPortrait(BaseModel):
    summary: str = EMPTY_SUMMARY
    focus_areas: List[str] = Field(default_factory=list)
    helpful_strategies: List[str] = Field(default_factory=list)
    preference_weights: Dict[str, float] = Field(default_factory=dict)
    task_stats: TaskStats = Field(default_factory=TaskStats)
    last_updated: datetime = Field(default_factory=_utcnow)

    @classmethod
    def empty(cls) -> "UserPortrait":
        return cls()


class PortraitDelta(BaseModel):
    summary: Optional[str] = None
    new_strategies: List[str] = Field(default_factory=list)
    weight_updates: Dict[str, float] = Field(default_factory=dict)
    focus_areas: List[str] = Field(default_factory=list)


class RegeneratedPortrait(BaseModel):
    summary: Optional[str] = None
    focus_areas: List[str] = Field(default_factory=list)
    helpful_strategies: List[str] = Field(default_factory=list)
    preference_weights: Dict[str, float] = Field(default_factory=dict)


class SessionHighlights(BaseModel):
    summary_updated: bool = False
    summary_preview: Optional[str] = None
    new_focus_areas: List[str] = Field(default_factory=list)
    new_strategies: List[str] = Field(default_factory=list)
    weight_ups: List[Tuple[str, float]] = Field(default_factory=list)
    weight_downs: List[Tuple[str, float]] = Field(default_factory=list)
