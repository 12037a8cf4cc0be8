import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

Sender = Literal["user", "assistant", "system"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatMessage(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    sender: Sender
    text: str
    timestamp: datetime = Field(default_factory=_utcnow)


class MessageRequest(BaseModel):
    text: str


class StreamRequest(BaseModel):
    text: str
    fast_mode: bool = False
