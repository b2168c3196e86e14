"""Wires the stores together once at startup."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .config import (
    CONVERSATIONS_FILENAME,
    DATA_DIR,
    PROJECTS_FILENAME,
    REPLY_CHAR_DELAY,
    REPLY_START_DELAY,
    SECRET_FILENAME,
)
from .conversations import ConversationStore
from .keychain import FileSecretStore, SecretStore
from .pairing import PairingService
from .projects import ProjectStore
from .replies import ReplySimulator
from .storage import ConversationFile, ProjectFile

logger = logging.getLogger(__name__)


@dataclass
class App:
    conversations: ConversationStore
    projects: ProjectStore
    pairing: PairingService
    secrets: SecretStore

    def close(self) -> None:
        """Flush both stores; call before the process exits."""
        self.conversations.close()
        self.projects.close()


def create_app(
    data_dir: Path = DATA_DIR,
    secrets: SecretStore | None = None,
    seed_projects: bool = True,
    reply_start_delay: float = REPLY_START_DELAY,
    reply_char_delay: float = REPLY_CHAR_DELAY,
) -> App:
    secrets = secrets or FileSecretStore(data_dir / SECRET_FILENAME)
    pairing = PairingService(secrets)
    conversations = ConversationStore(
        ConversationFile(data_dir / CONVERSATIONS_FILENAME),
        pairing,
        replies=ReplySimulator(start_delay=reply_start_delay, char_delay=reply_char_delay),
    )
    projects = ProjectStore(
        ProjectFile(data_dir / PROJECTS_FILENAME),
        replies=ReplySimulator(start_delay=reply_start_delay, char_delay=reply_char_delay),
        seed_if_empty=seed_projects,
    )
    logger.debug(
        "Loaded %d conversations and %d projects from %s",
        len(conversations.conversations),
        len(projects.projects),
        data_dir,
    )
    return App(conversations=conversations, projects=projects, pairing=pairing, secrets=secrets)
