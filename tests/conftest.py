"""Shared fixtures for vc-credential tests."""

from datetime import datetime, timezone

import pytest

from vc_credential import CredentialEngine, generate_key


ISSUER_DID = "did:x:issuer"
HOLDER_DID = "did:x:alice"


@pytest.fixture
def issuer_key():
    """An Ed25519 signing key."""
    return generate_key("Ed25519", id="key-1")


@pytest.fixture
def other_key():
    """An unrelated Ed25519 signing key."""
    return generate_key("Ed25519", id="key-2")


@pytest.fixture
def subject():
    """A minimal credential subject."""
    return {"holder": {"id": HOLDER_DID, "name": "Alice"}, "scope": ["read", "write"]}


@pytest.fixture
def engine(issuer_key):
    """Engine holding the issuer key."""
    return CredentialEngine(key=issuer_key)


def fixed_clock(moment: datetime):
    """Clock that always returns ``moment``."""
    return lambda: moment


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
