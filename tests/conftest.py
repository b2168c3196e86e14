"""Shared test fixtures."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from stealthyai.conversations import ConversationStore
from stealthyai.keychain import MemorySecretStore
from stealthyai.pairing import PairingService
from stealthyai.projects import ProjectStore
from stealthyai.replies import ReplySimulator
from stealthyai.storage import ConversationFile, ProjectFile

SECRET = bytes(range(32))


class FakeClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 9, 30, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def secret() -> bytes:
    return SECRET


@pytest.fixture
def secret_store(secret: bytes) -> MemorySecretStore:
    return MemorySecretStore(secret)


@pytest.fixture
def pairing(secret_store: MemorySecretStore, clock: FakeClock) -> PairingService:
    return PairingService(secret_store, clock=clock)


@pytest.fixture
def conversation_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "conversations.json"


@pytest.fixture
def project_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "projects.json"


@pytest.fixture
def store(conversation_path: Path, pairing: PairingService, clock: FakeClock) -> ConversationStore:
    """Conversation store with instant replies."""
    replies = ReplySimulator(start_delay=0, char_delay=0, clock=clock)
    return ConversationStore(ConversationFile(conversation_path), pairing, replies=replies, clock=clock)


@pytest.fixture
def project_store(project_path: Path, clock: FakeClock) -> ProjectStore:
    replies = ReplySimulator(start_delay=0, char_delay=0, clock=clock)
    return ProjectStore(ProjectFile(project_path), replies=replies, clock=clock)
