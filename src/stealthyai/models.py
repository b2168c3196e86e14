"""Data models for conversations, projects and the archive envelope."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .config import (
    ARCHIVE_VERSION,
    DEFAULT_CONVERSATION_TITLE,
    DEFAULT_PROJECT_ICON,
    MAX_TAGS,
    TITLE_ELLIPSIS,
    TITLE_MAX_CHARS,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso_seconds(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# Written as whole-second UTC ("2025-09-30T12:00:00Z"); readers of the
# archive format reject fractional seconds.
Timestamp = Annotated[
    datetime, PlainSerializer(_iso_seconds, return_type=str, when_used="json")
]


def derive_title(text: str) -> str:
    """Title for a conversation taken from its first message."""
    trimmed = text.strip()
    if len(trimmed) > TITLE_MAX_CHARS:
        return trimmed[:TITLE_MAX_CHARS] + TITLE_ELLIPSIS
    return trimmed


def has_placeholder_title(conversation: Conversation) -> bool:
    """True until the user (or a first message) has given the conversation a title."""
    return conversation.title.strip() in ("", DEFAULT_CONVERSATION_TITLE)


def clean_tags(tags: Iterable[str]) -> list[str]:
    """Trim tags, drop blanks and keep at most MAX_TAGS."""
    stripped = (tag.strip() for tag in tags)
    return [tag for tag in stripped if tag][:MAX_TAGS]


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class FlagColor(str, Enum):
    RED = "red"
    ORANGE = "orange"
    YELLOW = "yellow"
    GREEN = "green"
    BLUE = "blue"
    TEAL = "teal"
    PURPLE = "purple"
    GRAY = "gray"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


def _drop_orphan_flag_color(data: dict[str, Any]) -> None:
    if data.get("flaggedAt", data.get("flagged_at")) is None:
        data.pop("flagColor", None)
        data.pop("flag_color", None)


class _CamelModel(BaseModel):
    # Wire format uses camelCase keys; attributes stay snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("*")
    @classmethod
    def _assume_utc(cls, value: Any) -> Any:
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Message(_CamelModel):
    id: UUID = Field(default_factory=uuid4, frozen=True)
    content: str
    role: MessageRole
    timestamp: Timestamp = Field(default_factory=utcnow)


class Conversation(_CamelModel):
    """A conversation and its append-only message list.

    Pin state lives in ``pinned_at`` alone; ``is_pinned`` is derived from it
    and only exists on the wire for compatibility with older readers.
    """

    id: UUID = Field(default_factory=uuid4, frozen=True)
    title: str
    messages: list[Message] = []
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)
    is_archived: bool = False
    flagged_at: Timestamp | None = None
    flag_color: FlagColor | None = None
    pinned_at: Timestamp | None = None
    tags: list[str] = []
    icon_symbol: str | None = None
    icon_color: FlagColor | None = None

    @model_validator(mode="before")
    @classmethod
    def _repair_flag_and_pin(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        # Older files carry an independent isPinned boolean.
        is_pinned = data.pop("isPinned", None)
        if is_pinned is None:
            is_pinned = data.pop("is_pinned", None)
        pinned_at = data.get("pinnedAt", data.get("pinned_at"))
        if is_pinned is False:
            data.pop("pinnedAt", None)
            data.pop("pinned_at", None)
        elif is_pinned and pinned_at is None:
            data["pinnedAt"] = data.get("updatedAt", data.get("updated_at")) or utcnow()

        _drop_orphan_flag_color(data)
        return data

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, value: list[str]) -> list[str]:
        return clean_tags(value)

    @computed_field(alias="isPinned")
    @property
    def is_pinned(self) -> bool:
        return self.pinned_at is not None

    @property
    def is_flagged(self) -> bool:
        return self.flagged_at is not None

    def flag(self, color: FlagColor | None, at: datetime) -> None:
        self.flagged_at = at
        self.flag_color = color

    def unflag(self) -> None:
        self.flagged_at = None
        self.flag_color = None

    def find_message(self, message_id: UUID) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None


class Project(_CamelModel):
    id: UUID = Field(default_factory=uuid4, frozen=True)
    title: str
    description: str = ""
    updated_at: Timestamp = Field(default_factory=utcnow)
    flagged_at: Timestamp | None = None
    flag_color: FlagColor | None = None
    conversations: list[Conversation] = []
    tags: list[str] = []
    icon_symbol: str = DEFAULT_PROJECT_ICON
    icon_color: FlagColor | None = None

    @model_validator(mode="before")
    @classmethod
    def _repair_flag(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        _drop_orphan_flag_color(data)
        return data

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, value: list[str]) -> list[str]:
        return clean_tags(value)

    @field_validator("icon_symbol", mode="before")
    @classmethod
    def _default_icon(cls, value: Any) -> Any:
        return DEFAULT_PROJECT_ICON if value is None else value

    @property
    def is_flagged(self) -> bool:
        return self.flagged_at is not None

    def find_conversation(self, conversation_id: UUID) -> Conversation | None:
        for conversation in self.conversations:
            if conversation.id == conversation_id:
                return conversation
        return None


class ConversationsArchive(_CamelModel):
    """Versioned envelope used on disk and for export/import."""

    version: int = ARCHIVE_VERSION
    conversations: list[Conversation]


class PairingToken(BaseModel):
    uuid: UUID
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at


class Alert(BaseModel):
    title: str
    message: str
