import json
import logging
from typing import Any, Dict, List, Optional

from ..schemas.session import SessionOutcome
from ..schemas.tasks import ActionTask

logger = logging.getLogger(__name__)

SUMMARY_MARKERS = ("SUMMARY:", "ПІДСУМОК:")
TASKS_MARKERS = ("TASKS", "ЗАВДАННЯ")


def extract_summary(content: str) -> str:
    if not content:
        return ""
    start: Optional[int] = None
    for marker in SUMMARY_MARKERS:
        index = content.find(marker)
        if index >= 0:
            start = index + len(marker)
            break
    if start is None:
        return ""
    tail = content[start:]
    ends = [position for position in (tail.find(marker) for marker in TASKS_MARKERS) if position >= 0]
    if ends:
        tail = tail[: min(ends)]
    return tail.strip()


def _slice_between(content: str, opening: str, closing: str) -> Optional[str]:
    start = content.find(opening)
    end = content.rfind(closing)
    if start < 0 or end < 0 or start > end:
        return None
    return content[start : end + 1]


def _task_from_entry(entry: Any) -> Optional[ActionTask]:
    if not isinstance(entry, dict):
        return None
    title = entry.get("title")
    if not isinstance(title, str) or not title.strip():
        return None
    details = entry.get("details")
    return ActionTask(title=title.strip(), details=details.strip() if isinstance(details, str) and details.strip() else None)


def parse_tasks(content: str) -> List[ActionTask]:
    raw = _slice_between(content or "", "[", "]")
    if raw is None:
        return []
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.debug("Task block is not valid JSON (%d chars)", len(raw))
        return []
    if not isinstance(parsed, list):
        return []
    return [task for task in (_task_from_entry(entry) for entry in parsed) if task is not None]


def extract_json_object(content: str) -> Dict[str, Any]:
    raw = _slice_between(content or "", "{", "}")
    if raw is None:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.debug("Model output has no parseable JSON object")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def parse_outcome(content: str) -> SessionOutcome:
    return SessionOutcome(summary=extract_summary(content), tasks=parse_tasks(content))
