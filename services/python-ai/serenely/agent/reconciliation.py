"""
Session reconciliation.

Turns the user's end-of-session feedback into a `PortraitDelta`, merges it into
the stored portrait, updates task statistics and the pending task list, and
records the before/after highlights. Afterwards a model regeneration runs in
the background; its output is converted into another delta and merged through
the same locked path, never written over the portrait directly.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..core.config import Settings
from ..orchestrator.gateway import LLMGateway
from ..orchestrator.language import Language, detect_language
from ..portrait.highlights import compute_highlights
from ..portrait.merge import merge_portrait
from ..portrait.strategies import DEFAULT_TABLES, KeywordTables
from ..schemas.chat import ChatMessage
from ..schemas.portrait import SUMMARY_MAX_CHARS, PortraitDelta, RegeneratedPortrait, SessionHighlights, TaskStats, UserPortrait
from ..schemas.session import ReconciliationResult, SessionFeedback
from ..schemas.tasks import ActionTask
from ..storage.base import PortraitStore

logger = logging.getLogger(__name__)


def _is_helpful(task: ActionTask) -> bool:
    return task.usefulness == "high" or (task.status == "done" and task.usefulness != "low")


def build_feedback_delta(
    feedback: SessionFeedback,
    session_summary: str,
    language: Language,
    tables: KeywordTables = DEFAULT_TABLES,
) -> PortraitDelta:
    strategies: List[str] = []
    for task in feedback.task_feedback:
        if not _is_helpful(task):
            continue
        label = tables.task_strategy(task, language)
        if label:
            strategies.append(label)

    weights: Dict[str, float] = {}
    if feedback.thumbs_up is not None:
        key, signal = tables.thumbs_signal(feedback.thumbs_up)
        weights[key] = signal
    for key, signal in tables.updates_for_flags(feedback.flags):
        weights[key] = signal
    for task in feedback.task_feedback:
        key = tables.preference_key(task)
        if not key:
            continue
        weights[key] = max(weights.get(key, 0.0), tables.usefulness_signal(task.usefulness))

    summary = feedback.edited_summary.strip() or (session_summary or "").strip()
    return PortraitDelta(
        summary=summary[:SUMMARY_MAX_CHARS] or None,
        new_strategies=strategies,
        weight_updates=weights,
    )


def apply_task_stats(stats: TaskStats, tasks: Sequence[ActionTask]) -> TaskStats:
    updated = stats.model_copy()
    for task in tasks:
        updated.total_suggested += 1
        if task.status == "done":
            updated.completed += 1
        elif task.status == "skipped":
            updated.skipped += 1
        if task.usefulness == "high":
            updated.usefulness_high += 1
        elif task.usefulness == "medium":
            updated.usefulness_medium += 1
        elif task.usefulness == "low":
            updated.usefulness_low += 1
    return updated


def overlay_tasks(pending: Sequence[ActionTask], feedback: Sequence[ActionTask]) -> Tuple[List[ActionTask], List[ActionTask]]:
    """Apply ratings by id; returns (still open, newly resolved)."""
    merged = [task.model_copy(deep=True) for task in pending]
    index = {task.id: position for position, task in enumerate(merged)}
    for rated in feedback:
        position = index.get(rated.id)
        if position is None:
            index[rated.id] = len(merged)
            merged.append(rated.model_copy(deep=True))
            continue
        merged[position].status = rated.status
        merged[position].usefulness = rated.usefulness
    return [task for task in merged if task.is_open], [task for task in merged if not task.is_open]


def delta_from_regeneration(regenerated: RegeneratedPortrait) -> PortraitDelta:
    return PortraitDelta(
        summary=regenerated.summary,
        new_strategies=list(regenerated.helpful_strategies),
        weight_updates=dict(regenerated.preference_weights),
        focus_areas=list(regenerated.focus_areas),
    )


class ReconciliationController:
    """Single writer of the portrait record."""

    def __init__(
        self,
        store: PortraitStore,
        gateway: LLMGateway,
        settings: Optional[Settings] = None,
        tables: KeywordTables = DEFAULT_TABLES,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._app_language: Language = settings.app_language if settings else "uk"
        self._tables = tables
        self._lock = asyncio.Lock()
        self._background: Set[asyncio.Task] = set()
        self._last_highlights = SessionHighlights()

    @property
    def write_lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def last_highlights(self) -> SessionHighlights:
        return self._last_highlights.model_copy(deep=True)

    async def snapshot(self) -> UserPortrait:
        return await self._store.load_portrait()

    async def reconcile(
        self,
        feedback: SessionFeedback,
        session_summary: str = "",
        transcript: Sequence[ChatMessage] = (),
        language: Optional[Language] = None,
    ) -> ReconciliationResult:
        language = language or detect_language("", transcript, self._app_language)
        delta = build_feedback_delta(feedback, session_summary, language, self._tables)

        async with self._lock:
            before = await self._store.load_portrait()
            after = merge_portrait(before, delta)
            after.task_stats = apply_task_stats(before.task_stats, feedback.task_feedback)

            pending, resolved = overlay_tasks(await self._store.load_pending_tasks(), feedback.task_feedback)
            highlights = compute_highlights(before, after)

            await self._store.save_portrait(after)
            await self._store.save_pending_tasks(pending)
            await self._store.append_task_history(resolved)
            self._last_highlights = highlights

        logger.info(
            "Reconciled session: %d rated tasks, %d pending, %d new strategies",
            len(feedback.task_feedback),
            len(pending),
            len(highlights.new_strategies),
        )
        self._schedule_regeneration(list(transcript), after, feedback, language)
        return ReconciliationResult(portrait=after, highlights=highlights, pending_tasks=pending)

    async def apply_delta(self, delta: PortraitDelta) -> UserPortrait:
        async with self._lock:
            current = await self._store.load_portrait()
            merged = merge_portrait(current, delta)
            await self._store.save_portrait(merged)
        return merged

    async def clear_portrait(self) -> UserPortrait:
        async with self._lock:
            await self._store.clear_portrait()
            self._last_highlights = SessionHighlights()
        logger.info("Portrait cleared")
        return UserPortrait.empty()

    def _schedule_regeneration(
        self,
        transcript: List[ChatMessage],
        portrait: UserPortrait,
        feedback: SessionFeedback,
        language: Language,
    ) -> None:
        task = asyncio.create_task(self._regenerate(transcript, portrait, feedback, language))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _regenerate(
        self,
        transcript: List[ChatMessage],
        portrait: UserPortrait,
        feedback: SessionFeedback,
        language: Language,
    ) -> None:
        try:
            regenerated = await self._gateway.regenerate_portrait(
                transcript,
                portrait,
                portrait.summary,
                feedback.flags,
                feedback.task_feedback,
            )
            delta = delta_from_regeneration(regenerated)
            delta.new_strategies = [self._tables.normalize_strategy(item, language) for item in delta.new_strategies]
            await self.apply_delta(delta)
            logger.info("Regenerated portrait merged (%d strategies proposed)", len(delta.new_strategies))
        except asyncio.CancelledError:
            raise
        except Exception as error:
            logger.warning("Portrait regeneration failed, keeping reconciled portrait: %s", error)

    async def drain(self) -> None:
        while True:
            pending = [task for task in self._background if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
