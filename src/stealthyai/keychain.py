"""Per-install pairing secret storage."""

from __future__ import annotations

import logging
import os
import secrets
from pathlib import Path
from typing import Protocol

from .config import SECRET_NUM_BYTES
from .storage import write_atomic

logger = logging.getLogger(__name__)


class SecretStore(Protocol):
    def get_or_create(self) -> bytes: ...

    def reset(self) -> None: ...


class FileSecretStore:
    """Keeps the secret in a file readable only by the current user.

    The secret is generated lazily on first use and reused afterwards.
    ``reset`` deletes it so the next read creates a fresh one, which
    invalidates every link signed with the old secret.
    """

    def __init__(self, path: Path, num_bytes: int = SECRET_NUM_BYTES):
        self.path = path
        self.num_bytes = num_bytes

    def get_or_create(self) -> bytes:
        if self.path.exists():
            secret = self.path.read_bytes()
            if len(secret) == self.num_bytes:
                return secret
            logger.warning("Pairing secret at %s has unexpected length, regenerating", self.path)

        secret = secrets.token_bytes(self.num_bytes)
        write_atomic(self.path, secret)
        os.chmod(self.path, 0o600)
        logger.info("Created new pairing secret at %s", self.path)
        return secret

    def reset(self) -> None:
        self.path.unlink(missing_ok=True)


class MemorySecretStore:
    """In-process secret store, for embedding and tests."""

    def __init__(self, secret: bytes | None = None, num_bytes: int = SECRET_NUM_BYTES):
        self._secret = secret
        self.num_bytes = num_bytes

    def get_or_create(self) -> bytes:
        if self._secret is None:
            self._secret = secrets.token_bytes(self.num_bytes)
        return self._secret

    def reset(self) -> None:
        self._secret = None
