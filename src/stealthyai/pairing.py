"""Pairing tokens and HMAC-signed deep links for linking a companion device.

A deep link has the form::

    stealthyai://pair?v=1&token=<UUID>&exp=<unix seconds>&sig=<base64url>

where ``sig`` is HMAC-SHA256 over the UTF-8 payload ``"<v>.<UUID>.<exp>"``
keyed with the per-install secret, base64url encoded without padding.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import re
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlencode, urlsplit
from uuid import UUID, uuid4

from .config import (
    PAIRING_HOST,
    PAIRING_LINK_VERSION,
    PAIRING_SCHEME,
    PAIRING_TTL_SECONDS,
)
from .keychain import SecretStore
from .models import PairingToken, utcnow

logger = logging.getLogger(__name__)

_BASE64URL_RE = re.compile(r"[A-Za-z0-9_-]*")


class PairingError(Exception):
    """Raised when a deep link cannot be built or parsed."""


def base64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(text: str) -> bytes:
    """Strict inverse of ``base64url_encode``; padding and stray characters are rejected."""
    if not _BASE64URL_RE.fullmatch(text):
        raise binascii.Error(f"Invalid base64url text: {text!r}")
    padded = text + "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def token_payload(token: PairingToken, version: int = PAIRING_LINK_VERSION) -> bytes:
    expires = int(token.expires_at.timestamp())
    return f"{version}.{str(token.uuid).upper()}.{expires}".encode("utf-8")


def sign(payload: bytes, secret: bytes) -> bytes:
    return hmac.new(secret, payload, hashlib.sha256).digest()


def verify(signature: bytes, payload: bytes, secret: bytes) -> bool:
    """Constant-time check that ``signature`` is the HMAC of ``payload``."""
    return hmac.compare_digest(sign(payload, secret), signature)


def unsigned_link(token_uuid: UUID, scheme: str = PAIRING_SCHEME, host: str = PAIRING_HOST) -> str:
    return f"{scheme}://{host}/{str(token_uuid).upper()}"


def parse_deep_link(url: str) -> tuple[PairingToken, bytes, bytes]:
    """Split a signed link into its token, signed payload and signature.

    The payload is rebuilt from the query values exactly as they appear in
    the link, so a link whose values were rewritten into another spelling
    (lowercase token, padded expiry) no longer matches its signature.
    """
    parts = urlsplit(url)
    query = parse_qs(parts.query)
    try:
        version, token_text, expires_text = query["v"][0], query["token"][0], query["exp"][0]
        token = PairingToken(
            uuid=UUID(token_text),
            expires_at=datetime.fromtimestamp(int(expires_text), tz=timezone.utc),
        )
        signature = base64url_decode(query["sig"][0])
    except (KeyError, IndexError, ValueError, OverflowError, OSError, binascii.Error) as e:
        raise PairingError(f"Malformed pairing link: {url}") from e

    payload = f"{version}.{token_text}.{expires_text}".encode("utf-8")
    return token, payload, signature


class PairingService:
    """Issues pairing tokens and signs deep links with the install secret."""

    def __init__(
        self,
        secret_store: SecretStore,
        clock: Callable[[], datetime] = utcnow,
        scheme: str = PAIRING_SCHEME,
        host: str = PAIRING_HOST,
    ):
        self.secret_store = secret_store
        self.clock = clock
        self.scheme = scheme
        self.host = host

    def generate_token(self, ttl: float = PAIRING_TTL_SECONDS) -> PairingToken:
        return PairingToken(uuid=uuid4(), expires_at=self.clock() + timedelta(seconds=ttl))

    def deep_link(self, token: PairingToken) -> str:
        try:
            secret = self.secret_store.get_or_create()
        except Exception as e:
            # Whatever the backend, a failure here means no signed link.
            raise PairingError("Pairing secret is unavailable") from e

        payload = token_payload(token)
        params = {
            "v": PAIRING_LINK_VERSION,
            "token": str(token.uuid).upper(),
            "exp": int(token.expires_at.timestamp()),
            "sig": base64url_encode(sign(payload, secret)),
        }
        return f"{self.scheme}://{self.host}?{urlencode(params)}"

    def verify_link(self, url: str, now: datetime | None = None) -> bool:
        """Check a link's signature against this install's secret and its expiry."""
        try:
            token, payload, signature = parse_deep_link(url)
        except PairingError:
            logger.debug("Rejected malformed pairing link", exc_info=True)
            return False
        if token.is_expired(now or self.clock()):
            return False
        return verify(signature, payload, self.secret_store.get_or_create())
