import asyncio
import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from conftest import FakeGateway  # noqa: E402
from serenely.agent.quota import DailyQuota  # noqa: E402
from serenely.agent.reconciliation import ReconciliationController  # noqa: E402
from serenely.agent.session import ChatSession  # noqa: E402
from serenely.core.config import Settings  # noqa: E402
from serenely.errors import SessionBusyError, SessionStateError  # noqa: E402
from serenely.schemas.portrait import EMPTY_SUMMARY  # noqa: E402
from serenely.schemas.session import SessionFeedback  # noqa: E402
from serenely.schemas.tasks import ActionTask  # noqa: E402


def _session(store, gateway, limit=30, language="uk"):
    settings = Settings(app_language=language)
    controller = ReconciliationController(store, gateway, settings)
    return ChatSession(controller, gateway, DailyQuota(limit), settings), controller


def test_new_session_has_localized_welcome(store, gateway):
    session, _ = _session(store, gateway)
    assert session.state == "active"
    assert len(session.messages) == 1
    assert session.messages[0].sender == "assistant"
    assert "Привіт" in session.messages[0].text

    english, _ = _session(store, gateway, language="en")
    assert english.messages[0].text == "Hi! How are you feeling?"


@pytest.mark.asyncio
async def test_send_appends_reply_and_consumes_quota(store, gateway):
    session, _ = _session(store, gateway)
    reply = await session.send("  Мені сьогодні важко  ")
    assert reply.text == "I hear you."
    assert [m.sender for m in session.messages] == ["assistant", "user", "assistant"]
    assert session.messages[1].text == "Мені сьогодні важко"
    assert session.view().quota_remaining == 29


@pytest.mark.asyncio
async def test_blank_message_is_ignored(store, gateway):
    session, _ = _session(store, gateway)
    assert await session.send("   ") is None
    assert len(session.messages) == 1
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_llm_failure_shows_fallback(store, gateway):
    gateway.fail = True
    session, _ = _session(store, gateway)
    reply = await session.send("Привіт")
    assert reply.text == "Вибач, сталася помилка запиту до моделі."
    assert session.view().quota_remaining == 30
    assert (await store.load_portrait()).summary == EMPTY_SUMMARY


@pytest.mark.asyncio
async def test_quota_exhausted_skips_model_call(store, gateway):
    session, _ = _session(store, gateway, limit=1)
    await session.send("first")
    notice = await session.send("second")
    assert notice.text == "Daily message limit reached. Please try again tomorrow."
    assert gateway.sent == ["first"]
    assert session.messages[-2].text == "I hear you."


class SlowGateway(FakeGateway):
    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def send_message(self, text, history, portrait):
        await self.release.wait()
        return await super().send_message(text, history, portrait)


@pytest.mark.asyncio
async def test_overlapping_send_is_rejected(store):
    gateway = SlowGateway()
    session, _ = _session(store, gateway)
    first = asyncio.create_task(session.send("one"))
    await asyncio.sleep(0)
    assert session.view().is_generating
    with pytest.raises(SessionBusyError):
        await session.send("two")
    with pytest.raises(SessionBusyError):
        await session.finalize()
    gateway.release.set()
    await first
    assert gateway.sent == ["one"]


@pytest.mark.asyncio
async def test_finalize_then_confirm_and_save(store, gateway):
    session, controller = _session(store, gateway)
    await session.send("I walked in the park")
    outcome = await session.finalize()
    assert session.state == "awaiting_feedback"
    assert outcome.summary == "You talked about sleep."
    view = session.view()
    assert view.summary == "You talked about sleep."
    assert [task.title for task in view.suggested_tasks] == ["Evening walk"]

    rated = outcome.tasks[0].model_copy(update={"status": "done", "usefulness": "high"})
    result = await session.confirm(SessionFeedback(thumbs_up=True, task_feedback=[rated]))
    await controller.drain()

    assert result.portrait.summary == "You talked about sleep."
    assert session.state == "active"
    assert len(session.messages) == 1
    assert (await store.load_portrait()).task_stats.completed == 1


@pytest.mark.asyncio
async def test_confirm_without_save_keeps_conversation(store, gateway):
    session, controller = _session(store, gateway)
    await session.send("hello")
    await session.finalize()
    await session.confirm(SessionFeedback(saved=False))
    await controller.drain()
    assert session.state == "reconciled"
    assert len(session.messages) == 3

    await session.send("one more thing")
    assert session.state == "active"
    assert len(session.messages) == 5


@pytest.mark.asyncio
async def test_finalize_failure_uses_fallback_and_keeps_pending(store, gateway):
    await store.save_pending_tasks([ActionTask(title="Existing")])
    gateway.fail = True
    session, _ = _session(store, gateway)
    outcome = await session.finalize()
    assert outcome.summary == "Не вдалось згенерувати підсумок цього разу."
    assert outcome.tasks == []
    assert session.state == "awaiting_feedback"
    assert [task.title for task in await store.load_pending_tasks()] == ["Existing"]


@pytest.mark.asyncio
async def test_invalid_transitions(store, gateway):
    session, _ = _session(store, gateway)
    with pytest.raises(SessionStateError):
        await session.confirm(SessionFeedback())
    await session.finalize()
    with pytest.raises(SessionStateError):
        await session.finalize()
    with pytest.raises(SessionStateError):
        await session.send("hi")


@pytest.mark.asyncio
async def test_skip_performs_no_merge(store, gateway):
    session, _ = _session(store, gateway)
    await session.send("hi")
    await session.finalize()
    session.skip()
    assert session.state == "idle"
    assert session.view().suggested_tasks == []
    assert (await store.load_portrait()).summary == EMPTY_SUMMARY
    assert gateway.regenerate_calls == 0

    await session.send("back again")
    assert session.state == "active"
    assert [m.sender for m in session.messages] == ["assistant", "user", "assistant"]


@pytest.mark.asyncio
async def test_stream_collects_reply(store, gateway):
    session, _ = _session(store, gateway)
    chunks = [chunk async for chunk in session.stream("breathe with me", fast_mode=True)]
    assert chunks == ["Take ", "a breath."]
    assert session.messages[-1].text == "Take a breath."
    assert session.view().quota_remaining == 29
    assert session.view().is_generating is False


@pytest.mark.asyncio
async def test_stream_failure_yields_fallback(store, gateway):
    gateway.fail = True
    session, _ = _session(store, gateway, language="en")
    chunks = [chunk async for chunk in session.stream("hello")]
    assert chunks == ["Sorry, the request to the model failed."]
    assert session.messages[-1].text == chunks[0]
    assert session.view().quota_remaining == 30


@pytest.mark.asyncio
async def test_stream_closed_before_first_chunk_releases_session(store, gateway):
    session, _ = _session(store, gateway)
    chunks = session.stream("hello")
    await chunks.aclose()
    assert session.view().is_generating is False
    assert [m.sender for m in session.messages] == ["assistant"]

    reply = await session.send("again")
    assert reply.text == "I hear you."
    assert gateway.sent == ["again"]


@pytest.mark.asyncio
async def test_clear_portrait_restarts_session(store, gateway):
    session, controller = _session(store, gateway)
    await session.send("hello")
    await session.finalize()
    await session.confirm(SessionFeedback(edited_summary="Real summary", saved=False))
    await controller.drain()

    await session.clear_portrait()
    assert (await store.load_portrait()).summary == EMPTY_SUMMARY
    assert session.state == "active"
    assert len(session.messages) == 1
