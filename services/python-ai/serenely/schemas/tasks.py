import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field

TaskStatus = Literal["pending", "done", "skipped", "not_set"]
TaskUsefulness = Literal["not_set", "low", "medium", "high"]

OPEN_STATUSES = ("pending", "not_set")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActionTask(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    title: str
    details: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    status: TaskStatus = "not_set"
    usefulness: TaskUsefulness = "not_set"

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def text(self) -> str:
        return f"{self.title} {self.details or ''}"


class TaskCreate(BaseModel):
    title: str = Field(min_length=1)
    details: Optional[str] = None


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class TaskUsefulnessUpdate(BaseModel):
    usefulness: TaskUsefulness


class TaskHistoryEntry(ActionTask):
    resolved_at: datetime = Field(default_factory=_utcnow)
