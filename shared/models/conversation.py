from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ConversationRecord(BaseModel):
    id: str
    owner_id: str
    title: str
    created_at: datetime


class SourceRecord(BaseModel):
    content: str
    metadata: dict[str, Any] = {}


class MessageRecord(BaseModel):
    id: str
    conversation_id: str
    role: MessageRole
    content: str
    created_at: datetime
    sources: list[SourceRecord] = []
