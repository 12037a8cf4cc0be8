import asyncio
from typing import List, Optional, Sequence

from ..schemas.portrait import EMPTY_SUMMARY, UserPortrait
from ..schemas.tasks import ActionTask, TaskHistoryEntry
from .base import PortraitStore


def _by_creation(tasks: Sequence[ActionTask]) -> List[ActionTask]:
    return sorted((task.model_copy(deep=True) for task in tasks), key=lambda task: task.created_at)


class InMemoryPortraitStore(PortraitStore):
    def __init__(self) -> None:
        self._portrait: Optional[UserPortrait] = None
        self._pending: List[ActionTask] = []
        self._history: List[TaskHistoryEntry] = []
        self._lock = asyncio.Lock()

    async def load_portrait(self) -> UserPortrait:
        async with self._lock:
            if self._portrait is None:
                return UserPortrait.empty()
            portrait = self._portrait.model_copy(deep=True)
        if not portrait.summary:
            portrait.summary = EMPTY_SUMMARY
        return portrait

    async def save_portrait(self, portrait: UserPortrait) -> None:
        async with self._lock:
            self._portrait = portrait.model_copy(deep=True)

    async def clear_portrait(self) -> None:
        async with self._lock:
            self._portrait = None

    async def load_pending_tasks(self) -> List[ActionTask]:
        async with self._lock:
            return _by_creation(self._pending)

    async def save_pending_tasks(self, tasks: Sequence[ActionTask]) -> None:
        async with self._lock:
            self._pending = [task.model_copy(deep=True) for task in tasks]

    async def clear_pending_tasks(self) -> None:
        async with self._lock:
            self._pending = []

    async def append_task_history(self, tasks: Sequence[ActionTask]) -> None:
        async with self._lock:
            self._history.extend(TaskHistoryEntry(**task.model_dump()) for task in tasks)

    async def load_task_history(self) -> List[TaskHistoryEntry]:
        async with self._lock:
            return [entry.model_copy(deep=True) for entry in self._history]
