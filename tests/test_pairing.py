"""Tests for pairing tokens, signed deep links and the secret stores."""

import binascii
import re
import stat
from pathlib import Path
from uuid import UUID

import pytest

from stealthyai.keychain import FileSecretStore, MemorySecretStore
from stealthyai.pairing import (
    PairingError,
    PairingService,
    base64url_decode,
    base64url_encode,
    parse_deep_link,
    sign,
    token_payload,
    verify,
)

LINK_RE = re.compile(
    r"^stealthyai://pair\?v=1&token=[0-9A-F-]{36}&exp=\d+&sig=[A-Za-z0-9_-]{43}$"
)


def test_token_expires_after_ttl(pairing: PairingService, clock):
    token = pairing.generate_token(ttl=90)

    assert not token.is_expired(clock())
    clock.advance(89)
    assert not token.is_expired(clock())
    clock.advance(2)
    assert token.is_expired(clock())


def test_tokens_are_unique(pairing: PairingService):
    assert pairing.generate_token().uuid != pairing.generate_token().uuid


def test_deep_link_format(pairing: PairingService, clock):
    token = pairing.generate_token(ttl=90)
    link = pairing.deep_link(token)

    assert LINK_RE.match(link), link
    assert f"token={str(token.uuid).upper()}" in link
    assert f"exp={int(clock().timestamp()) + 90}" in link


def test_deep_link_signature_verifies(pairing: PairingService, secret: bytes):
    token = pairing.generate_token()
    parsed, payload, signature = parse_deep_link(pairing.deep_link(token))

    assert parsed.uuid == token.uuid
    assert payload == token_payload(token)
    assert payload.decode().startswith("1.")
    assert verify(signature, payload, secret)


def test_changed_payload_byte_fails_verification(pairing: PairingService, secret: bytes):
    _, payload, signature = parse_deep_link(pairing.deep_link(pairing.generate_token()))

    for i in range(len(payload)):
        tampered = bytearray(payload)
        tampered[i] ^= 0x01
        assert not verify(signature, bytes(tampered), secret)


def test_wrong_secret_fails_verification(pairing: PairingService):
    _, payload, signature = parse_deep_link(pairing.deep_link(pairing.generate_token()))
    assert not verify(signature, payload, b"\x00" * 32)


def test_signature_is_hmac_sha256():
    # RFC 4231 test case 2
    mac = sign(b"what do ya want for nothing?", b"Jefe")
    assert mac.hex() == "5bdcc146bf60754e6a042426089575c75a003f089d2739839dec58b964ec3843"


def test_base64url_has_no_padding_and_round_trips():
    for size in range(1, 8):
        data = bytes(range(250, 250 - size, -1))
        encoded = base64url_encode(data)
        assert "=" not in encoded
        assert "+" not in encoded and "/" not in encoded
        assert base64url_decode(encoded) == data


def test_verify_link_checks_expiry_and_signature(pairing: PairingService, clock):
    link = pairing.deep_link(pairing.generate_token(ttl=90))

    assert pairing.verify_link(link)
    assert not pairing.verify_link(link.replace("v=1", "v=2"))
    assert not pairing.verify_link("stealthyai://pair?v=1&token=nope")
    clock.advance(120)
    assert not pairing.verify_link(link)


def test_reset_secret_invalidates_links(clock):
    secrets = MemorySecretStore()
    service = PairingService(secrets, clock=clock)
    link = service.deep_link(service.generate_token())

    secrets.reset()
    assert not service.verify_link(link)


def test_file_secret_store_is_lazy_and_persistent(tmp_path: Path):
    path = tmp_path / "data" / "pairing.secret"
    store = FileSecretStore(path)
    assert not path.exists()

    secret = store.get_or_create()
    assert len(secret) == 32
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert FileSecretStore(path).get_or_create() == secret

    store.reset()
    assert not path.exists()
    assert store.get_or_create() != secret


def test_file_secret_store_replaces_truncated_secret(tmp_path: Path):
    path = tmp_path / "pairing.secret"
    path.write_bytes(b"short")

    secret = FileSecretStore(path).get_or_create()
    assert len(secret) == 32
    assert path.read_bytes() == secret


def test_parse_deep_link_reads_token_fields(pairing: PairingService):
    token = pairing.generate_token()
    parsed, _, _ = parse_deep_link(pairing.deep_link(token))

    assert isinstance(parsed.uuid, UUID)
    assert int(parsed.expires_at.timestamp()) == int(token.expires_at.timestamp())


def test_rewritten_link_values_fail_verification(pairing: PairingService):
    token = pairing.generate_token()
    link = pairing.deep_link(token)
    upper = str(token.uuid).upper()
    exp = str(int(token.expires_at.timestamp()))

    assert not pairing.verify_link(link.replace(upper, upper.lower()))
    assert not pairing.verify_link(link.replace(f"exp={exp}", f"exp=0{exp}"))
    assert not pairing.verify_link(link.replace("v=1", "v=01"))


def test_base64url_decode_is_strict():
    encoded = base64url_encode(b"\xfb\xff")
    assert base64url_decode(encoded) == b"\xfb\xff"

    for bad in (encoded + "=", "+/8", "ab!c", "a"):
        with pytest.raises(binascii.Error):
            base64url_decode(bad)


def test_link_with_invalid_signature_text_is_rejected(pairing: PairingService):
    link = pairing.deep_link(pairing.generate_token())
    assert not pairing.verify_link(link + "!")

    with pytest.raises(PairingError):
        parse_deep_link(link + "!")
