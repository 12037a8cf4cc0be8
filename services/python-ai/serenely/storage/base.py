from abc import ABC, abstractmethod
from typing import List, Sequence

from ..schemas.portrait import UserPortrait
from ..schemas.tasks import ActionTask, TaskHistoryEntry


class PortraitStore(ABC):
    """
    Durable home of the portrait record, the pending task list and the task history.

    Loads never raise: storage errors degrade to the empty portrait or an empty
    list. Writes raise `PersistenceError` so callers can retry.
    """

    async def init(self) -> None:
        return None

    async def close(self) -> None:
        return None

    @abstractmethod
    async def load_portrait(self) -> UserPortrait:
        ...

    @abstractmethod
    async def save_portrait(self, portrait: UserPortrait) -> None:
        ...

    @abstractmethod
    async def clear_portrait(self) -> None:
        ...

    @abstractmethod
    async def load_pending_tasks(self) -> List[ActionTask]:
        ...

    @abstractmethod
    async def save_pending_tasks(self, tasks: Sequence[ActionTask]) -> None:
        ...

    @abstractmethod
    async def clear_pending_tasks(self) -> None:
        ...

    @abstractmethod
    async def append_task_history(self, tasks: Sequence[ActionTask]) -> None:
        ...

    @abstractmethod
    async def load_task_history(self) -> List[TaskHistoryEntry]:
        ...
