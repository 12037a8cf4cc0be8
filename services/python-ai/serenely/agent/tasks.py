import asyncio
import logging
import uuid
from typing import Callable, List, Optional

from ..errors import TaskNotFoundError
from ..schemas.tasks import ActionTask, TaskHistoryEntry, TaskStatus, TaskUsefulness
from ..storage.base import PortraitStore

logger = logging.getLogger(__name__)


class TaskBoard:
    """
    Pending task list operations.

    Every mutation reloads the list, applies the change and saves the whole list
    back. A task whose status becomes done or skipped leaves the pending list and
    is appended to the task history.
    """

    def __init__(self, store: PortraitStore, lock: Optional[asyncio.Lock] = None) -> None:
        self._store = store
        self._lock = lock or asyncio.Lock()

    async def list(self) -> List[ActionTask]:
        return await self._store.load_pending_tasks()

    async def history(self) -> List[TaskHistoryEntry]:
        return await self._store.load_task_history()

    async def add(self, title: str, details: Optional[str] = None) -> ActionTask:
        task = ActionTask(title=title.strip(), details=(details or "").strip() or None)
        async with self._lock:
            tasks = await self._store.load_pending_tasks()
            tasks.append(task)
            await self._store.save_pending_tasks(tasks)
        logger.info("Added task %s", task.id)
        return task

    async def _update(self, task_id: uuid.UUID, change: Callable[[ActionTask], None]) -> ActionTask:
        async with self._lock:
            tasks = await self._store.load_pending_tasks()
            target = next((task for task in tasks if task.id == task_id), None)
            if target is None:
                raise TaskNotFoundError(str(task_id))
            change(target)
            await self._store.save_pending_tasks([task for task in tasks if task.is_open])
            if not target.is_open:
                await self._store.append_task_history([target])
                logger.info("Task %s resolved as %s", task_id, target.status)
        return target

    async def set_status(self, task_id: uuid.UUID, status: TaskStatus) -> ActionTask:
        def _change(task: ActionTask) -> None:
            task.status = status

        return await self._update(task_id, _change)

    async def set_usefulness(self, task_id: uuid.UUID, usefulness: TaskUsefulness) -> ActionTask:
        def _change(task: ActionTask) -> None:
            task.usefulness = usefulness

        return await self._update(task_id, _change)

    async def delete(self, task_id: uuid.UUID) -> None:
        async with self._lock:
            tasks = await self._store.load_pending_tasks()
            remaining = [task for task in tasks if task.id != task_id]
            if len(remaining) == len(tasks):
                raise TaskNotFoundError(str(task_id))
            await self._store.save_pending_tasks(remaining)
        logger.info("Deleted task %s", task_id)
