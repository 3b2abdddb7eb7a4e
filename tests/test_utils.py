"""Tests for credential helpers."""

from datetime import timedelta

import pytest

from conftest import HOLDER_DID, ISSUER_DID, utc
from vc_credential import IssueOptions
from vc_credential.utils import (
    DIDParts,
    credential_age,
    credential_types,
    extract_metadata,
    has_type,
    is_expired,
    parse_did,
    primary_type,
)


@pytest.fixture
def credential(engine, subject):
    options = IssueOptions(
        issuance_date="2026-01-01T00:00:00Z",
        expiration_date="2027-01-01T00:00:00Z",
        meta={"version": "1.0.0", "schema": "https://example.com/schema.json"},
    )
    return engine.issue(subject, "IdentityCredential", ISSUER_DID, options).unwrap()


class TestParseDID:
    """Tests for DID splitting."""

    def test_parse_did(self):
        """Test method and identifier are split at the first colon."""
        assert parse_did("did:web:example.com:users:alice") == DIDParts("web", "example.com:users:alice")

    @pytest.mark.parametrize("value", ["web:example.com", "did:web", "did::x", "did:web:", None])
    def test_not_a_did(self, value):
        """Test malformed DIDs raise ValueError."""
        with pytest.raises(ValueError):
            parse_did(value)


class TestCredentialHelpers:
    """Tests for reading issued credentials."""

    def test_extract_metadata(self, credential):
        """Test the metadata summary."""
        assert extract_metadata(credential) == {
            "id": credential["id"],
            "type": ["VerifiableCredential", "IdentityCredential"],
            "issuer": ISSUER_DID,
            "subject": HOLDER_DID,
            "issuanceDate": "2026-01-01T00:00:00Z",
            "expirationDate": "2027-01-01T00:00:00Z",
            "version": "1.0.0",
            "schema": "https://example.com/schema.json",
        }

    def test_is_expired(self, credential):
        """Test expiry relative to a given time."""
        assert is_expired(credential, now=utc(2026, 6, 1)) is False
        assert is_expired(credential, now=utc(2027, 6, 1)) is True

    def test_never_expires_without_date(self, credential):
        """Test credentials without expirationDate are never expired."""
        credential.pop("expirationDate")
        assert is_expired(credential, now=utc(9999, 1, 1)) is False

    def test_credential_age(self, credential):
        """Test age since issuance."""
        assert credential_age(credential, now=utc(2026, 1, 2)) == timedelta(days=1)

    def test_types(self, credential):
        """Test type helpers."""
        assert credential_types(credential) == ["IdentityCredential"]
        assert has_type(credential, "IdentityCredential")
        assert not has_type(credential, "AssetCredential")
        assert primary_type(credential) == "IdentityCredential"
        assert primary_type({"type": ["VerifiableCredential"]}) == "Generic"
