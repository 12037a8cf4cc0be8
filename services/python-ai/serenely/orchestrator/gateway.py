import logging
from abc import ABC, abstractmethod
from contextlib import aclosing
from typing import AsyncIterator, Dict, List, Optional, Sequence

from ..portrait.strategies import DEFAULT_TABLES, KeywordTables
from ..schemas.chat import ChatMessage
from ..schemas.portrait import RegeneratedPortrait, UserPortrait
from ..schemas.session import SessionOutcome
from ..schemas.tasks import ActionTask
from .language import Language, detect_language
from .llm import LLMClient
from .outcome_parser import extract_json_object, parse_outcome
from .prompts import PromptBook, portrait_values, role_of, task_ratings, transcript_of
from .validator import sanitize_regeneration, validation_errors

logger = logging.getLogger(__name__)

CHAT_TEMPERATURE = 0.7
SUMMARY_TEMPERATURE = 0.5


class LLMGateway(ABC):
    @abstractmethod
    async def send_message(self, text: str, history: Sequence[ChatMessage], portrait: UserPortrait) -> ChatMessage:
        ...

    @abstractmethod
    async def finalize_session(self, history: Sequence[ChatMessage], portrait: UserPortrait) -> SessionOutcome:
        ...

    @abstractmethod
    async def regenerate_portrait(
        self,
        history: Sequence[ChatMessage],
        old_portrait: UserPortrait,
        last_summary: str,
        flags: Sequence[str],
        task_feedback: Sequence[ActionTask],
    ) -> RegeneratedPortrait:
        ...

    @abstractmethod
    def stream_chat(self, history: Sequence[ChatMessage], fast_mode: bool = False) -> AsyncIterator[str]:
        ...

    async def aclose(self) -> None:
        return None


def regenerated_from_json(payload: Dict[str, object], language: Language, tables: KeywordTables = DEFAULT_TABLES) -> RegeneratedPortrait:
    errors = validation_errors(payload)
    if errors:
        logger.info("Regenerated portrait failed validation, dropping fields: %s", "; ".join(errors))
    cleaned = sanitize_regeneration(payload)
    summary = cleaned.get("summary")
    strategies = [tables.normalize_strategy(item, language) for item in cleaned.get("helpfulStrategies") or []]
    return RegeneratedPortrait(
        summary=summary.strip() if isinstance(summary, str) and summary.strip() else None,
        focus_areas=[item.strip() for item in cleaned.get("focusAreas") or [] if item.strip()],
        helpful_strategies=[item for item in strategies if item],
        preference_weights={str(key): float(value) for key, value in (cleaned.get("preferenceWeights") or {}).items()},
    )


class OpenAIGateway(LLMGateway):
    def __init__(self, client: LLMClient, app_language: Language = "uk", prompts: Optional[PromptBook] = None, tables: KeywordTables = DEFAULT_TABLES) -> None:
        self._client = client
        self._app_language = app_language
        self._prompts = prompts or PromptBook()
        self._tables = tables

    def _language(self, message: str, history: Sequence[ChatMessage]) -> Language:
        return detect_language(message, history, self._app_language)

    async def send_message(self, text: str, history: Sequence[ChatMessage], portrait: UserPortrait) -> ChatMessage:
        language = self._language(text, history)
        messages: List[Dict[str, str]] = [{"role": "system", "content": self._prompts.render("chat_system", language, **portrait_values(portrait))}]
        messages.extend({"role": role_of(item), "content": item.text} for item in history)
        if not history or history[-1].text != text:
            messages.append({"role": "user", "content": text})
        reply = await self._client.complete(messages, temperature=CHAT_TEMPERATURE)
        return ChatMessage(sender="assistant", text=reply.strip())

    async def finalize_session(self, history: Sequence[ChatMessage], portrait: UserPortrait) -> SessionOutcome:
        language = self._language("", history)
        prompt = self._prompts.render("finalize_user", language, transcript=transcript_of(history), **portrait_values(portrait))
        messages = [
            {"role": "system", "content": self._prompts.render("finalize_system", language)},
            {"role": "user", "content": prompt},
        ]
        content = await self._client.complete(messages, temperature=SUMMARY_TEMPERATURE)
        outcome = parse_outcome(content)
        if not outcome.summary:
            outcome.summary = content.strip()
        logger.info("Session finalized: summary=%d chars, tasks=%d", len(outcome.summary), len(outcome.tasks))
        return outcome

    async def regenerate_portrait(
        self,
        history: Sequence[ChatMessage],
        old_portrait: UserPortrait,
        last_summary: str,
        flags: Sequence[str],
        task_feedback: Sequence[ActionTask],
    ) -> RegeneratedPortrait:
        language = self._language("", history)
        prompt = self._prompts.render(
            "regenerate_user",
            language,
            last_summary=last_summary,
            flags=", ".join(flags),
            task_ratings=", ".join(task_ratings(task_feedback)),
            transcript=transcript_of(history),
            **portrait_values(old_portrait),
        )
        messages = [
            {"role": "system", "content": self._prompts.render("regenerate_system", language)},
            {"role": "user", "content": prompt},
        ]
        content = await self._client.complete(messages, temperature=SUMMARY_TEMPERATURE)
        return regenerated_from_json(extract_json_object(content), language, self._tables)

    async def stream_chat(self, history: Sequence[ChatMessage], fast_mode: bool = False) -> AsyncIterator[str]:
        messages = [{"role": role_of(item), "content": item.text} for item in history]
        async with aclosing(self._client.stream(messages, fast_mode=fast_mode)) as chunks:
            async for chunk in chunks:
                yield chunk

    async def aclose(self) -> None:
        await self._client.aclose()
