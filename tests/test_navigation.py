"""Tests for sidebar selection routing."""

from uuid import uuid4

import pytest

from stealthyai.conversations import ConversationStore
from stealthyai.navigation import (
    ConversationSelection,
    ProjectSelection,
    ProjectsSelection,
    resolve_selection,
)
from stealthyai.projects import ProjectStore


def test_projects_selection_lists_sorted_projects(store: ConversationStore, project_store: ProjectStore):
    project_store.create_project("Old")
    flagged = project_store.create_project("Flagged")
    project_store.flag_project(flagged)

    result = resolve_selection(ProjectsSelection(), store, project_store)
    assert [p.title for p in result] == ["Flagged", "Old"]


def test_project_selection(store: ConversationStore, project_store: ProjectStore):
    project_id = project_store.create_project("Thesis")

    assert resolve_selection(ProjectSelection(project_id), store, project_store).title == "Thesis"
    assert resolve_selection(ProjectSelection(uuid4()), store, project_store) is None


def test_conversation_selection_prefers_top_level(store: ConversationStore, project_store: ProjectStore):
    conversation_id = store.create_empty_conversation("Top level")

    result = resolve_selection(ConversationSelection(conversation_id), store, project_store)
    assert result.title == "Top level"


def test_conversation_selection_falls_back_to_projects(
    store: ConversationStore, project_store: ProjectStore
):
    project_id = project_store.create_project("Thesis")
    conversation_id = project_store.create_conversation(project_id, title="Nested")

    result = resolve_selection(ConversationSelection(conversation_id), store, project_store)
    assert result.title == "Nested"


def test_missing_conversation_resolves_to_none(store: ConversationStore, project_store: ProjectStore):
    assert resolve_selection(ConversationSelection(uuid4()), store, project_store) is None


def test_selections_are_value_objects():
    project_id = uuid4()
    assert ProjectSelection(project_id) == ProjectSelection(project_id)
    assert ProjectsSelection() == ProjectsSelection()
    assert len({ConversationSelection(project_id), ConversationSelection(project_id)}) == 1


def test_unknown_selection_is_rejected(store: ConversationStore, project_store: ProjectStore):
    with pytest.raises(TypeError):
        resolve_selection("projects", store, project_store)
