import pathlib
import sys
from typing import AsyncIterator, List, Optional, Sequence

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from serenely.errors import LLMError  # noqa: E402
from serenely.orchestrator.gateway import LLMGateway  # noqa: E402
from serenely.schemas.chat import ChatMessage  # noqa: E402
from serenely.schemas.portrait import RegeneratedPortrait, UserPortrait  # noqa: E402
from serenely.schemas.session import SessionOutcome  # noqa: E402
from serenely.schemas.tasks import ActionTask  # noqa: E402
from serenely.storage.memory import InMemoryPortraitStore  # noqa: E402


class FakeGateway(LLMGateway):
    """Scripted gateway; set `fail` to make every call raise LLMError."""

    def __init__(self) -> None:
        self.reply = "I hear you."
        self.outcome = SessionOutcome(summary="You talked about sleep.", tasks=[ActionTask(title="Evening walk")])
        self.regenerated: Optional[RegeneratedPortrait] = None
        self.chunks: List[str] = ["Take ", "a breath."]
        self.fail = False
        self.regenerate_fail = False
        self.sent: List[str] = []
        self.regenerate_calls = 0

    async def send_message(self, text: str, history: Sequence[ChatMessage], portrait: UserPortrait) -> ChatMessage:
        if self.fail:
            raise LLMError("provider down", 503)
        self.sent.append(text)
        return ChatMessage(sender="assistant", text=self.reply)

    async def finalize_session(self, history: Sequence[ChatMessage], portrait: UserPortrait) -> SessionOutcome:
        if self.fail:
            raise LLMError("provider down", 503)
        return self.outcome.model_copy(deep=True)

    async def regenerate_portrait(self, history, old_portrait, last_summary, flags, task_feedback) -> RegeneratedPortrait:
        self.regenerate_calls += 1
        if self.fail or self.regenerate_fail:
            raise LLMError("regeneration failed", 500)
        return self.regenerated or RegeneratedPortrait()

    async def stream_chat(self, history: Sequence[ChatMessage], fast_mode: bool = False) -> AsyncIterator[str]:
        if self.fail:
            raise LLMError("stream failed", 503)
        for chunk in self.chunks:
            yield chunk


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def store() -> InMemoryPortraitStore:
    return InMemoryPortraitStore()
