"""Project store: projects and the conversations nested inside them."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import NamedTuple
from uuid import UUID

from .config import DEFAULT_CONVERSATION_TITLE, DEFAULT_PROJECT_ICON
from .models import (
    Conversation,
    FlagColor,
    Message,
    MessageRole,
    Project,
    clean_tags,
    derive_title,
    has_placeholder_title,
    utcnow,
)
from .replies import ReplySimulator
from .storage import ProjectFile

logger = logging.getLogger(__name__)


class PinnedEntry(NamedTuple):
    project_id: UUID
    conversation: Conversation


def _sample_projects(now: datetime) -> list[Project]:
    return [
        Project(
            title="Test project",
            description="Testing the create project functionality",
            updated_at=now - timedelta(minutes=4),
        ),
        Project(
            title="StealthyAI",
            updated_at=now - timedelta(days=19),
        ),
        Project(
            title="How to use StealthyAI",
            description="An example project that also doubles as a how-to guide.",
            updated_at=now - timedelta(days=19),
        ),
    ]


class ProjectStore:
    """Owns the project list. Every mutation is saved before returning.

    Conversation-level operations are addressed by ``(project_id,
    conversation_id)`` and also bump the parent project's ``updated_at`` so
    recency sorting reflects nested activity.
    """

    def __init__(
        self,
        file: ProjectFile,
        replies: ReplySimulator | None = None,
        clock: Callable[[], datetime] = utcnow,
        seed_if_empty: bool = False,
    ):
        self.file = file
        self.clock = clock
        self.replies = replies or ReplySimulator(clock=clock)
        self.projects: list[Project] = file.load()
        if not self.projects and seed_if_empty:
            self.projects = _sample_projects(clock())
            self.save()

    def save(self) -> None:
        self.file.save(self.projects)

    def close(self) -> None:
        self.replies.cancel_all()
        self.save()

    async def wait_for_replies(self) -> None:
        await self.replies.wait()

    # -- lookup -----------------------------------------------------------

    def get(self, project_id: UUID) -> Project | None:
        for project in self.projects:
            if project.id == project_id:
                return project
        return None

    def get_conversation(self, project_id: UUID, conversation_id: UUID) -> Conversation | None:
        project = self.get(project_id)
        if project is None:
            return None
        return project.find_conversation(conversation_id)

    def find_conversation(self, conversation_id: UUID) -> tuple[Project, Conversation] | None:
        """Locate a conversation by id alone, searching every project."""
        for project in self.projects:
            conversation = project.find_conversation(conversation_id)
            if conversation is not None:
                return project, conversation
        return None

    def _touch(self, project_id: UUID, conversation_id: UUID) -> Conversation | None:
        """Look up a nested conversation and stamp both it and its project."""
        project = self.get(project_id)
        conversation = project.find_conversation(conversation_id) if project else None
        if conversation is None:
            return None
        now = self.clock()
        conversation.updated_at = now
        project.updated_at = now
        return conversation

    # -- views ------------------------------------------------------------

    def sorted_projects(self, search: str = "") -> list[Project]:
        """Projects matching ``search``, flagged first then most recently active."""
        q = search.strip().casefold()
        matching = [
            p for p in self.projects
            if not q or q in p.title.casefold() or q in p.description.casefold()
        ]
        by_activity = sorted(matching, key=lambda p: p.updated_at, reverse=True)
        # Stable sort keeps recency order among projects with equal flag keys.
        return sorted(
            by_activity,
            key=lambda p: (p.is_flagged, p.flagged_at or p.updated_at),
            reverse=True,
        )

    def visible_conversations(self, project_id: UUID) -> list[Conversation]:
        project = self.get(project_id)
        if project is None:
            return []
        return [c for c in project.conversations if not c.is_archived]

    def pinned_conversations(self) -> list[PinnedEntry]:
        """Pinned conversations across all projects, most recently pinned first."""
        entries = [
            PinnedEntry(project.id, conversation)
            for project in self.projects
            for conversation in project.conversations
            if conversation.is_pinned and not conversation.is_archived
        ]
        return sorted(entries, key=lambda e: e.conversation.pinned_at, reverse=True)

    # -- projects ---------------------------------------------------------

    def create_project(
        self,
        title: str,
        description: str = "",
        icon_symbol: str | None = DEFAULT_PROJECT_ICON,
        icon_color: FlagColor | None = None,
        tags: list[str] | None = None,
    ) -> UUID:
        project = Project(
            title=title,
            description=description,
            updated_at=self.clock(),
            tags=clean_tags(tags or []),
            icon_symbol=icon_symbol or DEFAULT_PROJECT_ICON,
            icon_color=icon_color,
        )
        self.projects.insert(0, project)
        self.save()
        logger.debug("Created project %s", project.id)
        return project.id

    def update_project(
        self,
        project_id: UUID,
        title: str,
        description: str,
        tags: list[str] | None = None,
        icon_symbol: str | None = None,
        icon_color: FlagColor | None = None,
    ) -> None:
        project = self.get(project_id)
        if project is None:
            return
        project.title = title
        project.description = description
        project.updated_at = self.clock()
        project.tags = clean_tags(tags or [])
        if icon_symbol is not None or icon_color is not None:
            project.icon_symbol = icon_symbol or DEFAULT_PROJECT_ICON
            project.icon_color = icon_color
        self.save()

    def delete_project(self, project_id: UUID) -> None:
        project = self.get(project_id)
        if project is None:
            return
        for conversation in project.conversations:
            self.replies.cancel(conversation.id)
        self.projects = [p for p in self.projects if p.id != project_id]
        self.save()
        logger.debug(
            "Deleted project %s with %d conversation(s)", project_id, len(project.conversations)
        )

    def flag_project(self, project_id: UUID, color: FlagColor | None = FlagColor.ORANGE) -> None:
        project = self.get(project_id)
        if project is None:
            return
        project.flagged_at = self.clock()
        project.flag_color = color
        self.save()

    def unflag_project(self, project_id: UUID) -> None:
        project = self.get(project_id)
        if project is None:
            return
        project.flagged_at = None
        project.flag_color = None
        self.save()

    def toggle_project_flag(self, project_id: UUID) -> None:
        project = self.get(project_id)
        if project is None:
            return
        if project.is_flagged:
            self.unflag_project(project_id)
        else:
            self.flag_project(project_id)

    # -- conversations ----------------------------------------------------

    def create_conversation(
        self, project_id: UUID, title: str = DEFAULT_CONVERSATION_TITLE
    ) -> UUID | None:
        project = self.get(project_id)
        if project is None:
            return None
        now = self.clock()
        conversation = Conversation(title=title, created_at=now, updated_at=now)
        project.conversations.append(conversation)
        project.updated_at = now
        self.save()
        return conversation.id

    def add_message(
        self,
        project_id: UUID,
        conversation_id: UUID,
        content: str,
        role: MessageRole = MessageRole.USER,
    ) -> Message | None:
        conversation = self.get_conversation(project_id, conversation_id)
        if conversation is None:
            return None

        if not conversation.messages and has_placeholder_title(conversation):
            title = derive_title(content)
            if title:
                conversation.title = title

        conversation = self._touch(project_id, conversation_id)
        message = Message(content=content, role=role, timestamp=conversation.updated_at)
        conversation.messages.append(message)
        self.save()
        return message

    def send(self, project_id: UUID, conversation_id: UUID, text: str) -> Message | None:
        """Add a user message and stream a simulated assistant reply after it."""
        text = text.strip()
        if not text:
            return None
        message = self.add_message(project_id, conversation_id, text)
        if message is None:
            return None
        self.replies.start(
            conversation_id,
            text,
            lambda cid: self.get_conversation(project_id, cid),
            lambda _: self._reply_finished(project_id),
        )
        return message

    def _reply_finished(self, project_id: UUID) -> None:
        project = self.get(project_id)
        if project is not None:
            project.updated_at = self.clock()
        self.save()

    def delete_conversation(self, project_id: UUID, conversation_id: UUID) -> None:
        project = self.get(project_id)
        if project is None:
            return
        self.replies.cancel(conversation_id)
        project.conversations = [c for c in project.conversations if c.id != conversation_id]
        project.updated_at = self.clock()
        self.save()

    def delete_if_empty(self, project_id: UUID, conversation_id: UUID) -> None:
        conversation = self.get_conversation(project_id, conversation_id)
        if conversation is not None and not conversation.messages:
            self.delete_conversation(project_id, conversation_id)

    def rename_conversation(self, project_id: UUID, conversation_id: UUID, title: str) -> None:
        title = title.strip()
        if not title:
            return
        conversation = self._touch(project_id, conversation_id)
        if conversation is None:
            return
        conversation.title = title
        self.save()

    def archive_conversation(self, project_id: UUID, conversation_id: UUID) -> None:
        conversation = self._touch(project_id, conversation_id)
        if conversation is None:
            return
        conversation.is_archived = True
        self.save()

    def unarchive_conversation(self, project_id: UUID, conversation_id: UUID) -> None:
        conversation = self._touch(project_id, conversation_id)
        if conversation is None:
            return
        conversation.is_archived = False
        self.save()

    def flag_conversation(
        self,
        project_id: UUID,
        conversation_id: UUID,
        color: FlagColor | None = FlagColor.ORANGE,
    ) -> None:
        conversation = self._touch(project_id, conversation_id)
        if conversation is None:
            return
        conversation.flag(color, conversation.updated_at)
        self.save()

    def unflag_conversation(self, project_id: UUID, conversation_id: UUID) -> None:
        conversation = self._touch(project_id, conversation_id)
        if conversation is None:
            return
        conversation.unflag()
        self.save()

    def toggle_pin(self, project_id: UUID, conversation_id: UUID) -> None:
        conversation = self._touch(project_id, conversation_id)
        if conversation is None:
            return
        conversation.pinned_at = None if conversation.is_pinned else conversation.updated_at
        self.save()

    def set_conversation_tags(
        self, project_id: UUID, conversation_id: UUID, tags: list[str]
    ) -> None:
        conversation = self._touch(project_id, conversation_id)
        if conversation is None:
            return
        conversation.tags = clean_tags(tags)
        self.save()

    def set_conversation_icon(
        self,
        project_id: UUID,
        conversation_id: UUID,
        symbol: str | None,
        color: FlagColor | None = None,
    ) -> None:
        conversation = self._touch(project_id, conversation_id)
        if conversation is None:
            return
        conversation.icon_symbol = symbol
        conversation.icon_color = color
        self.save()
