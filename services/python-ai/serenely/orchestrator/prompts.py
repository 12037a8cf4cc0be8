import json
from pathlib import Path
from string import Template
from typing import Dict, Iterable, List, Optional

import yaml

from ..schemas.chat import ChatMessage
from ..schemas.portrait import UserPortrait
from ..schemas.tasks import ActionTask
from .language import Language

DEFAULT_PROMPTS_PATH = Path(__file__).with_name("prompts.yaml")
REQUIRED_TEMPLATES = ("chat_system", "finalize_system", "finalize_user", "regenerate_system", "regenerate_user")


class PromptBook:
    def __init__(self, path: Optional[Path] = None) -> None:
        content = (path or DEFAULT_PROMPTS_PATH).read_text(encoding="utf-8")
        parsed = yaml.safe_load(content)
        if not isinstance(parsed, dict):
            raise ValueError("Prompt file did not produce an object")
        missing = [name for name in REQUIRED_TEMPLATES if not isinstance(parsed.get(name), dict)]
        if missing:
            raise ValueError(f"Prompt file is missing templates: {', '.join(missing)}")
        self._templates: Dict[str, Dict[str, Template]] = {
            name: {str(lang): Template(str(text)) for lang, text in parsed[name].items()} for name in REQUIRED_TEMPLATES
        }

    def render(self, name: str, language: Language, **values: str) -> str:
        variants = self._templates[name]
        template = variants.get(language) or variants["en"]
        return template.safe_substitute(**values).strip()


def role_of(message: ChatMessage) -> str:
    return message.sender


def transcript_of(history: Iterable[ChatMessage]) -> str:
    return "\n".join(
        f"{'USER' if item.sender == 'user' else 'ASSISTANT'}: {item.text}" for item in history if item.sender != "system"
    )


def portrait_values(portrait: UserPortrait) -> Dict[str, str]:
    return {
        "summary": portrait.summary,
        "strategies": ", ".join(portrait.helpful_strategies),
        "focus_areas": ", ".join(portrait.focus_areas),
        "preferences": json.dumps(portrait.preference_weights, ensure_ascii=False, sort_keys=True),
    }


def task_ratings(tasks: Iterable[ActionTask]) -> List[str]:
    return [f"{task.title}={task.usefulness}" for task in tasks]
