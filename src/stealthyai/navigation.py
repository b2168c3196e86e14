"""Sidebar selection and routing to the entity it points at."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union
from uuid import UUID

from .conversations import ConversationStore
from .models import Conversation, Project
from .projects import ProjectStore


@dataclass(frozen=True)
class ProjectsSelection:
    """The project list itself."""


@dataclass(frozen=True)
class ProjectSelection:
    project_id: UUID


@dataclass(frozen=True)
class ConversationSelection:
    conversation_id: UUID


SidebarSelection = Union[ProjectsSelection, ProjectSelection, ConversationSelection]


def resolve_selection(
    selection: SidebarSelection,
    conversations: ConversationStore,
    projects: ProjectStore,
) -> list[Project] | Project | Conversation | None:
    """Return what the detail pane should show for ``selection``.

    Conversation ids are looked up among top-level conversations first and
    then inside projects. Returns None when the target no longer exists.
    """
    match selection:
        case ProjectsSelection():
            return projects.sorted_projects()
        case ProjectSelection(project_id=project_id):
            return projects.get(project_id)
        case ConversationSelection(conversation_id=conversation_id):
            conversation = conversations.get(conversation_id)
            if conversation is not None:
                return conversation
            found = projects.find_conversation(conversation_id)
            return found[1] if found else None
        case _:
            raise TypeError(f"Unknown sidebar selection: {selection!r}")
