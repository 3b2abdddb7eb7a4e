"""Helpers for reading issued credentials and splitting DIDs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from vc_credential.credential import BASE_CREDENTIAL_TYPE
from vc_credential.proof import parse_timestamp


@dataclass(frozen=True)
class DIDParts:
    """A DID split into method and method-specific identifier."""

    method: str
    identifier: str


def parse_did(did: str) -> DIDParts:
    """Split ``did:<method>:<identifier>``.

    did:web:example.com:users:alice -> DIDParts("web", "example.com:users:alice")

    Raises:
        ValueError: If the string is not a DID.
    """
    if not isinstance(did, str) or not did.startswith("did:"):
        raise ValueError(f"Not a DID: {did!r}")
    method, sep, identifier = did[4:].partition(":")
    if not sep or not method or not identifier:
        raise ValueError(f"DID must have a method and an identifier: {did}")
    return DIDParts(method=method, identifier=identifier)


def _issuer_id(credential: dict[str, Any]) -> str | None:
    issuer = credential.get("issuer")
    if isinstance(issuer, str):
        return issuer
    if isinstance(issuer, dict):
        return issuer.get("id")
    return None


def extract_metadata(credential: dict[str, Any]) -> dict[str, Any]:
    """Summarise a credential's identifying fields."""
    subject = credential.get("credentialSubject") or {}
    holder = subject.get("holder") or {}
    meta = credential.get("meta") or {}
    return {
        "id": credential.get("id"),
        "type": list(credential.get("type", [])),
        "issuer": _issuer_id(credential),
        "subject": holder.get("id"),
        "issuanceDate": credential.get("issuanceDate"),
        "expirationDate": credential.get("expirationDate"),
        "version": meta.get("version"),
        "schema": meta.get("schema"),
    }


def is_expired(credential: dict[str, Any], now: datetime | None = None) -> bool:
    """True if the credential's expirationDate is before ``now``."""
    expiration = credential.get("expirationDate")
    if not expiration:
        return False
    return parse_timestamp(expiration) < (now or datetime.now(timezone.utc))


def credential_age(credential: dict[str, Any], now: datetime | None = None) -> timedelta:
    return (now or datetime.now(timezone.utc)) - parse_timestamp(credential["issuanceDate"])


def credential_types(credential: dict[str, Any]) -> list[str]:
    """Types without the base VerifiableCredential type."""
    return [t for t in credential.get("type", []) if t != BASE_CREDENTIAL_TYPE]


def has_type(credential: dict[str, Any], credential_type: str) -> bool:
    return credential_type in credential.get("type", [])


def primary_type(credential: dict[str, Any]) -> str:
    types = credential_types(credential)
    return types[0] if types else "Generic"
