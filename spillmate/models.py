from __future__ import annotations
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import uuid

from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProfileRole(str, Enum):
    FREE_USER = "free_user"
    PREMIUM_USER = "premium_user"
    ADMIN = "admin"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"
    __table_args__ = {"extend_existing": True}
    # Matches the identity provider's user id
    id: str = Field(primary_key=True)
    email: str = Field(index=True)
    role: str = Field(default=ProfileRole.FREE_USER.value, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ConversationRecord(SQLModel, table=True):
    __tablename__ = "conversations"
    __table_args__ = {"extend_existing": True}
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    user_id: str = Field(index=True, foreign_key="profiles.id")
    title: str = "New Conversation"
    # JSON array of {id, role, content, timestamp}
    messages: str = "[]"
    mood_before: Optional[int] = None
    mood_after: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)


class MoodLog(SQLModel, table=True):
    __tablename__ = "mood_logs"
    __table_args__ = {"extend_existing": True}
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, foreign_key="profiles.id")
    mood_rating: int
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)


class SafetyEvent(SQLModel, table=True):
    """A moderation flag raised on a user's chat message (admin "flagged content")."""
    __tablename__ = "safety_events"
    __table_args__ = {"extend_existing": True}
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    conversation_id: Optional[str] = Field(default=None, index=True)
    kind: str
    severity: str = Severity.LOW.value
    payload: str
    resolved: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=utcnow)
