"""
Detached-JWT proof codec.

Builds and parses the ``JwtProof2020`` proof attached to a credential:

    header.payload.signature

where header and payload are compact JSON encoded as base64url without
padding, and the signature is whatever the signing key produced over the
ASCII string ``header.payload``. The codec never looks inside the signature.
"""

from __future__ import annotations

import base64
import binascii
import json
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

PROOF_TYPE = "JwtProof2020"

# Fixed header. The algorithm is not negotiated from the key type.
JWT_HEADER: dict[str, str] = {"alg": "EdDSA", "typ": "JWT"}

_BASE64URL_RE = re.compile(r"^[A-Za-z0-9_-]*$")


class ProofFormatError(Exception):
    """Raised when a proof cannot be built or parsed."""


@dataclass(frozen=True)
class SigningInput:
    """Encoded JWT segments and the exact string that gets signed."""

    header_segment: str
    payload_segment: str
    signing_input: str


@dataclass(frozen=True)
class ParsedJwt:
    """A decoded detached-JWT proof."""

    header: dict[str, Any]
    payload: dict[str, Any]
    signature: str
    header_segment: str
    payload_segment: str

    @property
    def signing_input(self) -> str:
        """Signing input re-derived from the encoded segments as received."""
        return f"{self.header_segment}.{self.payload_segment}"

    @property
    def vc(self) -> dict[str, Any] | None:
        vc = self.payload.get("vc")
        return vc if isinstance(vc, dict) else None


def base64url_encode(data: bytes | str) -> str:
    """Encode to base64url without padding.

    Args:
        data: Bytes, or a string which is encoded as UTF-8 first.

    Returns:
        Base64url string with ``+`` → ``-``, ``/`` → ``_`` and no ``=``.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def base64url_decode(data: str) -> bytes:
    """Decode base64url without padding.

    Args:
        data: Base64url encoded string.

    Returns:
        Decoded bytes.

    Raises:
        ProofFormatError: If the input is not valid base64url.
    """
    if not isinstance(data, str) or not _BASE64URL_RE.match(data):
        raise ProofFormatError("Invalid base64url characters")
    if len(data) % 4 == 1:
        raise ProofFormatError("Invalid base64url length")

    # Add padding if needed
    padding = 4 - (len(data) % 4)
    if padding != 4:
        data += "=" * padding
    try:
        return base64.urlsafe_b64decode(data)
    except (binascii.Error, ValueError) as e:
        raise ProofFormatError(f"Invalid base64url: {e}") from e


def is_base64url(data: Any) -> bool:
    """Check whether a value is a non-empty base64url string."""
    if not isinstance(data, str) or not data:
        return False
    try:
        base64url_decode(data)
    except ProofFormatError:
        return False
    return True


def compact_json(data: Any) -> str:
    """Serialize to JSON with no whitespace, preserving key order and unicode."""
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    A trailing ``Z`` is accepted, and naive values are taken as UTC.

    Raises:
        ValueError: If the value is not a valid timestamp.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with a ``Z`` suffix.

    Millisecond precision is used unless the value carries sub-millisecond
    detail, which is kept.
    """
    dt = parse_timestamp(value)
    timespec = "milliseconds" if dt.microsecond % 1000 == 0 else "microseconds"
    return dt.isoformat(timespec=timespec).replace("+00:00", "Z")


def to_epoch_seconds(value: str | datetime) -> int:
    """Convert a timestamp to whole seconds since the epoch (floored)."""
    return math.floor(parse_timestamp(value).timestamp())


def _issuer_id(issuer: Any) -> Any:
    if isinstance(issuer, dict):
        return issuer.get("id")
    return issuer


def build_jwt_payload(
    credential: dict[str, Any],
    issuer_id: str | None = None,
) -> dict[str, Any]:
    """Build the JWT claims for a credential.

    Args:
        credential: The credential without its proof. A ``proof`` key, if
            present, is left out of the ``vc`` claim.
        issuer_id: Value for ``iss``. Defaults to the credential's issuer.

    Returns:
        The claims ``vc``, ``jti``, ``nbf``, ``iss`` and, when the credential
        has an expirationDate, ``exp``.
    """
    vc = {k: v for k, v in credential.items() if k != "proof"}
    payload: dict[str, Any] = {
        "vc": vc,
        "jti": credential.get("id"),
        "nbf": to_epoch_seconds(credential["issuanceDate"]),
        "iss": issuer_id or _issuer_id(credential.get("issuer")),
    }
    if credential.get("expirationDate"):
        payload["exp"] = to_epoch_seconds(credential["expirationDate"])
    return payload


def build_signing_input(
    credential: dict[str, Any],
    issuer_id: str | None = None,
) -> SigningInput:
    """Serialize header and payload once and build the signing input.

    Raises:
        ProofFormatError: If the credential cannot be serialized.
    """
    try:
        payload = build_jwt_payload(credential, issuer_id)
        header_segment = base64url_encode(compact_json(JWT_HEADER))
        payload_segment = base64url_encode(compact_json(payload))
    except (KeyError, TypeError, ValueError) as e:
        raise ProofFormatError(f"Cannot encode JWT payload: {e}") from e

    return SigningInput(
        header_segment=header_segment,
        payload_segment=payload_segment,
        signing_input=f"{header_segment}.{payload_segment}",
    )


def assemble_jwt(signing_input: SigningInput, signature: str) -> str:
    """Append a signature to the signing input."""
    return f"{signing_input.signing_input}.{signature}"


def _decode_segment(segment: str, name: str) -> dict[str, Any]:
    try:
        decoded = json.loads(base64url_decode(segment).decode("utf-8"))
    except ProofFormatError as e:
        raise ProofFormatError(f"Invalid JWT {name}: {e}") from e
    except (UnicodeDecodeError, ValueError) as e:
        raise ProofFormatError(f"Invalid JWT {name} JSON: {e}") from e

    if not isinstance(decoded, dict):
        raise ProofFormatError(f"JWT {name} must be a JSON object")
    return decoded


def parse_proof(jwt: str) -> ParsedJwt:
    """Split and decode a detached-JWT proof.

    Args:
        jwt: The compact JWT string.

    Returns:
        ParsedJwt holding the decoded header and payload together with the
        encoded segments they came from.

    Raises:
        ProofFormatError: On a non-string input, a segment count other than
            three, or a segment that is not valid base64url / JSON.
    """
    if not isinstance(jwt, str) or not jwt:
        raise ProofFormatError("JWT must be a non-empty string")

    parts = jwt.split(".")
    if len(parts) != 3:
        raise ProofFormatError(f"JWT must have 3 segments, got {len(parts)}")

    header_segment, payload_segment, signature = parts
    header = _decode_segment(header_segment, "header")
    payload = _decode_segment(payload_segment, "payload")

    if not signature:
        raise ProofFormatError("JWT signature segment is empty")
    try:
        base64url_decode(signature)
    except ProofFormatError as e:
        raise ProofFormatError(f"Invalid JWT signature: {e}") from e

    return ParsedJwt(
        header=header,
        payload=payload,
        signature=signature,
        header_segment=header_segment,
        payload_segment=payload_segment,
    )


def create_proof(jwt: str, verification_method: str | None = None) -> dict[str, Any]:
    """Wrap a JWT in a ``JwtProof2020`` proof object."""
    proof: dict[str, Any] = {"type": PROOF_TYPE, "jwt": jwt}
    if verification_method:
        proof["verificationMethod"] = verification_method
    return proof
