"""
Chat session state machine.

  active -> finalizing -> awaiting_feedback -> reconciled -> active
  awaiting_feedback -> idle (skip)

Only one chat turn runs at a time. A failed model call never touches the
persisted portrait or task list; the user sees a localized fallback instead.
"""

import logging
from contextlib import aclosing
from typing import AsyncIterator, Dict, List, Optional, Tuple

from ..core.config import Settings
from ..errors import LLMError, SessionBusyError, SessionStateError
from ..orchestrator.gateway import LLMGateway
from ..orchestrator.language import Language, detect_language
from ..schemas.chat import ChatMessage
from ..schemas.session import ReconciliationResult, SessionFeedback, SessionOutcome, SessionState, SessionView
from ..schemas.tasks import ActionTask
from .quota import DailyQuota
from .reconciliation import ReconciliationController

logger = logging.getLogger(__name__)

TEXTS: Dict[str, Dict[str, str]] = {
    "welcome": {
        "uk": "Привіт! Як ти себе почуваєш?",
        "en": "Hi! How are you feeling?",
    },
    "quota_reached": {
        "uk": "Денний ліміт повідомлень вичерпано. Спробуй, будь ласка, завтра.",
        "en": "Daily message limit reached. Please try again tomorrow.",
    },
    "reply_failed": {
        "uk": "Вибач, сталася помилка запиту до моделі.",
        "en": "Sorry, the request to the model failed.",
    },
    "summary_failed": {
        "uk": "Не вдалось згенерувати підсумок цього разу.",
        "en": "Could not generate a summary this time.",
    },
}


def localized(key: str, language: Language) -> str:
    variants = TEXTS[key]
    return variants.get(language) or variants["en"]


class ChatSession:
    def __init__(
        self,
        controller: ReconciliationController,
        gateway: LLMGateway,
        quota: DailyQuota,
        settings: Optional[Settings] = None,
    ) -> None:
        self._controller = controller
        self._gateway = gateway
        self._quota = quota
        self._app_language: Language = settings.app_language if settings else "uk"
        self._messages: List[ChatMessage] = []
        self._summary = ""
        self._suggested: List[ActionTask] = []
        self._state: SessionState = "active"
        self._is_generating = False
        self.start_new_session()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    @property
    def language(self) -> Language:
        return detect_language("", self._messages, self._app_language)

    def start_new_session(self) -> None:
        self._messages = [ChatMessage(sender="assistant", text=localized("welcome", self._app_language))]
        self._summary = ""
        self._suggested = []
        self._is_generating = False
        self._state = "active"

    def view(self) -> SessionView:
        return SessionView(
            state=self._state,
            language=self.language,
            messages=self.messages,
            summary=self._summary,
            suggested_tasks=[task.model_copy(deep=True) for task in self._suggested],
            is_generating=self._is_generating,
            quota_remaining=self._quota.remaining(),
        )

    def _begin_turn(self, text: str) -> Optional[Tuple[str, Language]]:
        trimmed = (text or "").strip()
        if not trimmed:
            return None
        if self._is_generating:
            raise SessionBusyError("A reply is still being generated")
        if self._state == "idle":
            self.start_new_session()
        elif self._state == "reconciled":
            # Feedback was given without saving; the conversation continues.
            self._state = "active"
        elif self._state != "active":
            raise SessionStateError(f"Cannot send messages while the session is {self._state}")
        return trimmed, detect_language(trimmed, self._messages, self._app_language)

    def _quota_notice(self, language: Language) -> ChatMessage:
        notice = ChatMessage(sender="assistant", text=localized("quota_reached", language))
        self._messages.append(notice)
        logger.info("Daily message limit reached (%d)", self._quota.limit)
        return notice

    async def send(self, text: str) -> Optional[ChatMessage]:
        turn = self._begin_turn(text)
        if turn is None:
            return None
        trimmed, language = turn
        if not self._quota.can_consume():
            return self._quota_notice(language)

        self._messages.append(ChatMessage(sender="user", text=trimmed))
        self._is_generating = True
        try:
            portrait = await self._controller.snapshot()
            reply = await self._gateway.send_message(trimmed, list(self._messages), portrait)
            self._quota.consume()
        except LLMError as error:
            logger.warning("Chat turn failed: %s", error)
            reply = ChatMessage(sender="assistant", text=localized("reply_failed", language))
        finally:
            self._is_generating = False

        self._messages.append(reply)
        return reply

    def stream(self, text: str, fast_mode: bool = False) -> AsyncIterator[str]:
        """
        Validates the turn immediately; the returned iterator yields reply chunks.

        The user message and the busy flag are only recorded once iteration
        starts, so an iterator closed or dropped unstarted leaves no trace.
        """
        turn = self._begin_turn(text)
        if turn is None:
            return self._replay([])
        trimmed, language = turn
        if not self._quota.can_consume():
            return self._replay([self._quota_notice(language).text])
        return self._stream_reply(trimmed, language, fast_mode)

    @staticmethod
    async def _replay(chunks: List[str]) -> AsyncIterator[str]:
        for chunk in chunks:
            yield chunk

    async def _stream_reply(self, text: str, language: Language, fast_mode: bool) -> AsyncIterator[str]:
        if self._is_generating:
            raise SessionBusyError("A reply is still being generated")
        self._messages.append(ChatMessage(sender="user", text=text))
        self._is_generating = True
        parts: List[str] = []
        try:
            try:
                async with aclosing(self._gateway.stream_chat(list(self._messages), fast_mode)) as chunks:
                    async for chunk in chunks:
                        parts.append(chunk)
                        yield chunk
                self._quota.consume()
            except LLMError as error:
                logger.warning("Streaming chat turn failed: %s", error)
                parts = [localized("reply_failed", language)]
                yield parts[0]
        finally:
            self._is_generating = False
            if parts:
                self._messages.append(ChatMessage(sender="assistant", text="".join(parts)))

    async def finalize(self) -> SessionOutcome:
        if self._state == "finalizing":
            raise SessionStateError("Session is already being finalized")
        if self._is_generating:
            raise SessionBusyError("A reply is still being generated")
        if self._state != "active":
            raise SessionStateError(f"Cannot finalize a session that is {self._state}")

        self._state = "finalizing"
        language = self.language
        try:
            portrait = await self._controller.snapshot()
            outcome = await self._gateway.finalize_session(list(self._messages), portrait)
        except LLMError as error:
            logger.warning("Session finalize failed: %s", error)
            # Pending tasks stay untouched.
            outcome = SessionOutcome(summary=localized("summary_failed", language), tasks=[])
        except Exception:
            self._state = "active"
            raise

        self._summary = outcome.summary
        self._suggested = list(outcome.tasks)
        self._state = "awaiting_feedback"
        return outcome

    async def confirm(self, feedback: SessionFeedback) -> ReconciliationResult:
        if self._state != "awaiting_feedback":
            raise SessionStateError(f"No summary awaiting feedback (session is {self._state})")
        result = await self._controller.reconcile(
            feedback,
            session_summary=self._summary,
            transcript=list(self._messages),
        )
        self._suggested = []
        self._state = "reconciled"
        if feedback.saved:
            self.start_new_session()
        return result

    def skip(self) -> None:
        if self._state == "finalizing":
            raise SessionStateError("Session is being finalized")
        self._summary = ""
        self._suggested = []
        self._state = "idle"
        logger.info("Session skipped without reconciliation")

    async def clear_portrait(self) -> None:
        await self._controller.clear_portrait()
        self.start_new_session()
