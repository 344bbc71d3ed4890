from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple
import uuid

DEFAULT_TITLE = "New Conversation"


def new_id() -> str:
    return uuid.uuid4().hex


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class InvalidRoleError(ValueError):
    pass


def parse_role(value: Any) -> Role:
    try:
        return Role(value)
    except ValueError:
        raise InvalidRoleError(f"Unknown message role: {value!r}") from None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(raw: Optional[str]) -> datetime:
    if not raw:
        return _utcnow()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    parsed = datetime.fromisoformat(raw)
    # older rows were stored as naive UTC
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class Message:
    role: Role
    content: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        object.__setattr__(self, "role", parse_role(self.role))

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            role=data.get("role"),
            content=data.get("content") or "",
            id=str(data.get("id") or new_id()),
            created_at=_parse_timestamp(data.get("timestamp")),
        )


class Conversation:
    """An ordered, append-only sequence of messages under one id and title."""

    def __init__(self, title: str = DEFAULT_TITLE, messages: Iterable[Message] = (), id: Optional[str] = None):
        self.id = id or new_id()
        self.title = title
        self._messages: List[Message] = list(messages)

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def last_message(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    def append(self, message: Message) -> Message:
        if not isinstance(message, Message):
            raise TypeError(f"expected Message, got {type(message).__name__}")
        self._messages.append(message)
        return message

    def to_dicts(self) -> List[Dict[str, str]]:
        return [m.to_dict() for m in self._messages]

    @classmethod
    def from_dicts(cls, id: str, title: str, items: Iterable[Dict[str, Any]]) -> "Conversation":
        return cls(title=title, messages=[Message.from_dict(i) for i in items], id=id)

    def __len__(self) -> int:
        return len(self._messages)

    def __repr__(self) -> str:
        return f"Conversation(id={self.id!r}, title={self.title!r}, messages={len(self._messages)})"
