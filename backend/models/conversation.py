"""Conversation data models."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List


class Role(str, Enum):
    """Author of a turn. The generation backend is always `model`."""
    USER = "user"
    MODEL = "model"

    @classmethod
    def normalize(cls, value) -> "Role":
        """Map any stored or client-supplied role onto the two roles the backend accepts."""
        if isinstance(value, Role):
            return value
        return cls.USER if str(value).strip().lower() == "user" else cls.MODEL


@dataclass
class Turn:
    """Represents a single message in a conversation."""
    role: Role
    content: str
    timestamp: datetime


@dataclass
class Conversation:
    """Represents a multi-turn conversation owned by one user."""
    conversation_id: str
    owner_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    turns: List[Turn] = field(default_factory=list)
    owner_email: str = ""


@dataclass
class ConversationSummary:
    """Lightweight listing entry for a conversation."""
    conversation_id: str
    title: str
    created_at: datetime
    updated_at: datetime
