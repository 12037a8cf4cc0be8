import re
from typing import Iterable, Literal

from ..schemas.chat import ChatMessage

Language = Literal["uk", "en"]

CYRILLIC = re.compile(r"[\u0400-\u04FF\u0500-\u052F]")
RECENT_USER_MESSAGES = 10


def language_of(text: str) -> Language:
    return "uk" if CYRILLIC.search(text) else "en"


def detect_language(message: str, history: Iterable[ChatMessage], app_language: Language = "uk") -> Language:
    if app_language == "en":
        return "en"

    trimmed = (message or "").strip()
    if trimmed:
        return language_of(trimmed)

    recent = [item for item in reversed(list(history)) if item.sender == "user"][:RECENT_USER_MESSAGES]
    if recent:
        votes_en = sum(1 for item in recent if language_of(item.text) == "en")
        return "en" if votes_en / len(recent) >= 0.5 else "uk"

    return app_language
