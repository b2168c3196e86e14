"""JSON file storage for conversations and projects."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any
from uuid import UUID

from pydantic import TypeAdapter, ValidationError

from .config import ARCHIVE_VERSION
from .models import Conversation, ConversationsArchive, Project

logger = logging.getLogger(__name__)

_conversation_list = TypeAdapter(list[Conversation])
_project_list = TypeAdapter(list[Project])


class ArchiveDecodeError(ValueError):
    """Raised when bytes are neither a versioned archive nor a legacy list."""


def _dumps(data: Any) -> bytes:
    return (
        json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
    ).encode("utf-8")


def encode_archive(archive: ConversationsArchive) -> bytes:
    """Serialize an archive with sorted keys so output is stable."""
    return _dumps(archive.model_dump(mode="json", by_alias=True, exclude_none=True))


def _check_unique_ids(ids: Iterable[UUID], kind: str) -> None:
    seen: set[UUID] = set()
    for item_id in ids:
        if item_id in seen:
            raise ArchiveDecodeError(f"Duplicate {kind} id {str(item_id).upper()}")
        seen.add(item_id)


def decode_archive(data: bytes | str) -> ConversationsArchive:
    """Decode the versioned envelope, falling back to a bare conversation list.

    Archives holding the same conversation id twice are rejected.
    """
    try:
        archive = ConversationsArchive.model_validate_json(data)
    except ValidationError as envelope_err:
        try:
            conversations = _conversation_list.validate_json(data)
        except ValidationError:
            raise ArchiveDecodeError(
                f"Not a conversations archive: {envelope_err.error_count()} error(s)"
            ) from envelope_err
        logger.info("Decoded legacy conversation list (%d items)", len(conversations))
        archive = ConversationsArchive(version=ARCHIVE_VERSION, conversations=conversations)

    _check_unique_ids((c.id for c in archive.conversations), "conversation")
    return archive


def encode_projects(projects: list[Project]) -> bytes:
    return _dumps(
        _project_list.dump_python(projects, mode="json", by_alias=True, exclude_none=True)
    )


def decode_projects(data: bytes | str) -> list[Project]:
    """Decode a project list; a ``{"projects": [...]}`` wrapper is also accepted."""
    raw = json.loads(data)
    if isinstance(raw, dict) and "projects" in raw:
        raw = raw["projects"]
    projects = _project_list.validate_python(raw)
    _check_unique_ids((p.id for p in projects), "project")
    _check_unique_ids((c.id for p in projects for c in p.conversations), "conversation")
    return projects


def write_atomic(path: Path, data: bytes) -> None:
    """Write ``data`` to a temp file beside ``path`` and rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class ConversationFile:
    """Best-effort persistence of the conversation list."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> list[Conversation]:
        """Return saved conversations, or an empty list if none can be read."""
        if not self.path.exists():
            return []
        try:
            return decode_archive(self.path.read_bytes()).conversations
        except (OSError, ArchiveDecodeError):
            logger.warning("Failed to load conversations from %s", self.path, exc_info=True)
            return []

    def save(self, conversations: list[Conversation]) -> bool:
        archive = ConversationsArchive(version=ARCHIVE_VERSION, conversations=conversations)
        try:
            write_atomic(self.path, encode_archive(archive))
        except OSError:
            logger.warning("Failed to save conversations to %s", self.path, exc_info=True)
            return False
        logger.debug("Saved %d conversations to %s", len(conversations), self.path)
        return True


class ProjectFile:
    """Best-effort persistence of the project list."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> list[Project]:
        if not self.path.exists():
            return []
        try:
            return decode_projects(self.path.read_bytes())
        except (OSError, ValueError):
            logger.warning("Failed to load projects from %s", self.path, exc_info=True)
            return []

    def save(self, projects: list[Project]) -> bool:
        try:
            write_atomic(self.path, encode_projects(projects))
        except OSError:
            logger.warning("Failed to save projects to %s", self.path, exc_info=True)
            return False
        logger.debug("Saved %d projects to %s", len(projects), self.path)
        return True
