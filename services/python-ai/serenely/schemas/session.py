from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .chat import ChatMessage
from .portrait import SessionHighlights, UserPortrait
from .tasks import ActionTask

SessionState = Literal["active", "finalizing", "awaiting_feedback", "reconciled", "idle"]


class SessionOutcome(BaseModel):
    summary: str = ""
    tasks: List[ActionTask] = Field(default_factory=list)


class SessionFeedback(BaseModel):
    edited_summary: str = ""
    thumbs_up: Optional[bool] = None
    flags: List[str] = Field(default_factory=list)
    task_feedback: List[ActionTask] = Field(default_factory=list)
    saved: bool = True


class ReconciliationResult(BaseModel):
    portrait: UserPortrait
    highlights: SessionHighlights
    pending_tasks: List[ActionTask] = Field(default_factory=list)


class SessionView(BaseModel):
    state: SessionState
    language: Literal["uk", "en"]
    messages: List[ChatMessage]
    summary: str = ""
    suggested_tasks: List[ActionTask] = Field(default_factory=list)
    is_generating: bool = False
    quota_remaining: int = 0
