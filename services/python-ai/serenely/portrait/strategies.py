from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from ..schemas.tasks import ActionTask, TaskUsefulness

DEFAULT_TABLE_PATH = Path(__file__).with_name("strategies.yaml")
FALLBACK_LANGUAGE = "en"


@dataclass(frozen=True)
class StrategyRule:
    keywords: Tuple[str, ...]
    labels: Dict[str, str]

    def matches(self, text: str) -> bool:
        return any(keyword in text for keyword in self.keywords)

    def label(self, language: str) -> str:
        return self.labels.get(language) or self.labels.get(FALLBACK_LANGUAGE) or next(iter(self.labels.values()))


@dataclass(frozen=True)
class PreferenceRule:
    keywords: Tuple[str, ...]
    key: str

    def matches(self, text: str) -> bool:
        return any(keyword in text for keyword in self.keywords)


@dataclass(frozen=True)
class KeywordTables:
    strategies: Tuple[StrategyRule, ...]
    preferences: Tuple[PreferenceRule, ...]
    usefulness_signals: Dict[str, float]
    thumbs_key: str
    thumbs_up: float
    thumbs_down: float
    flag_updates: Dict[str, Tuple[str, float]] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "KeywordTables":
        content = (path or DEFAULT_TABLE_PATH).read_text(encoding="utf-8")
        return cls.from_mapping(yaml.safe_load(content))

    @classmethod
    def from_mapping(cls, parsed: Any) -> "KeywordTables":
        if not isinstance(parsed, dict):
            raise ValueError("Keyword table file did not produce an object")
        strategies = tuple(
            StrategyRule(keywords=_lower_all(item.get("keywords")), labels={str(k): str(v) for k, v in (item.get("labels") or {}).items()})
            for item in parsed.get("strategies") or []
            if item.get("labels")
        )
        preferences = tuple(
            PreferenceRule(keywords=_lower_all(item.get("keywords")), key=str(item["key"]))
            for item in parsed.get("preference_keys") or []
            if item.get("key")
        )
        thumbs = parsed.get("thumbs") or {}
        flags = {
            str(name): (str(entry["key"]), float(entry["signal"]))
            for name, entry in (parsed.get("feedback_flags") or {}).items()
        }
        return cls(
            strategies=strategies,
            preferences=preferences,
            usefulness_signals={str(k): float(v) for k, v in (parsed.get("usefulness_signals") or {}).items()},
            thumbs_key=str(thumbs.get("key", "tone_supportive")),
            thumbs_up=float(thumbs.get("up", 0.8)),
            thumbs_down=float(thumbs.get("down", 0.2)),
            flag_updates=flags,
        )

    def strategy_label(self, text: str, language: str) -> Optional[str]:
        lowered = text.lower()
        for rule in self.strategies:
            if rule.matches(lowered):
                return rule.label(language)
        return None

    def normalize_strategy(self, text: str, language: str) -> str:
        trimmed = text.strip()
        if not trimmed:
            return ""
        return self.strategy_label(trimmed, language) or trimmed

    def task_strategy(self, task: ActionTask, language: str) -> str:
        # Unmatched tasks contribute their title verbatim.
        return self.strategy_label(task.text, language) or task.title.strip()

    def preference_key(self, task: ActionTask) -> Optional[str]:
        lowered = task.text.lower()
        for rule in self.preferences:
            if rule.matches(lowered):
                return rule.key
        return None

    def usefulness_signal(self, usefulness: TaskUsefulness) -> float:
        return self.usefulness_signals.get(usefulness, 0.5)

    def thumbs_signal(self, thumbs_up: bool) -> Tuple[str, float]:
        return self.thumbs_key, self.thumbs_up if thumbs_up else self.thumbs_down

    def updates_for_flags(self, flags: Iterable[str]) -> List[Tuple[str, float]]:
        return [self.flag_updates[flag] for flag in flags if flag in self.flag_updates]


def _lower_all(values: Any) -> Tuple[str, ...]:
    return tuple(str(value).lower() for value in values or [])


DEFAULT_TABLES = KeywordTables.load()
