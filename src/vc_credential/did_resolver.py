"""
DID Resolver for did:web method.

Resolves did:web identifiers to DID Documents per W3C DID specification and
turns their verification methods into verification-only keys.
https://w3c-ccg.github.io/did-method-web/

The credential engine never resolves DIDs itself; callers use this to find
the key to verify with.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from vc_credential.keys import ED25519, SECP256K1, Key, PublicKey
from vc_credential.proof import ProofFormatError, base64url_decode


class DIDResolutionError(Exception):
    """Raised when DID resolution fails."""


@dataclass
class PublicKeyJWK:
    """OKP (Ed25519) or EC (secp256k1) public key in JWK format."""

    kty: str
    crv: str
    x: str
    y: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PublicKeyJWK:
        """Create PublicKeyJWK from a JWK dictionary."""
        return cls(
            kty=data.get("kty", ""),
            crv=data.get("crv", ""),
            x=data.get("x", ""),
            y=data.get("y", ""),
        )

    def to_public_key_hex(self) -> tuple[str, str]:
        """Return (key type, hex public key) for this JWK.

        Raises:
            DIDResolutionError: For unsupported curves or bad coordinates.
        """
        try:
            if self.kty == "OKP" and self.crv == "Ed25519":
                return ED25519, base64url_decode(self.x).hex()
            if self.kty == "EC" and self.crv == "secp256k1":
                x_bytes = base64url_decode(self.x)
                y_bytes = base64url_decode(self.y)
                # Compressed point: parity prefix + x
                prefix = b"\x03" if y_bytes and y_bytes[-1] & 1 else b"\x02"
                return SECP256K1, (prefix + x_bytes).hex()
        except ProofFormatError as e:
            raise DIDResolutionError(f"Invalid JWK coordinates: {e}") from e
        raise DIDResolutionError(f"Unsupported JWK: kty={self.kty} crv={self.crv}")


@dataclass
class VerificationMethod:
    """DID Document verification method."""

    id: str
    type: str
    controller: str
    public_key_hex: str | None = None
    public_key_jwk: PublicKeyJWK | None = None

    def key_type(self) -> str:
        """Key type implied by the method type, e.g. Ed25519VerificationKey2020."""
        lowered = self.type.lower()
        if "secp256k1" in lowered:
            return SECP256K1
        return ED25519

    def to_public_key(self) -> PublicKey:
        """Build a verification-only key from this method.

        Raises:
            DIDResolutionError: If the method carries no usable key material.
        """
        if self.public_key_hex:
            key_type, public_key_hex = self.key_type(), self.public_key_hex
        elif self.public_key_jwk is not None:
            key_type, public_key_hex = self.public_key_jwk.to_public_key_hex()
        else:
            raise DIDResolutionError(f"No public key material in verification method {self.id}")

        key_id = self.id.split("#", 1)[1] if "#" in self.id else self.id
        return Key.create_public(
            id=key_id,
            public_key_hex=public_key_hex,
            type=key_type,
            meta={"controller": self.controller, "verificationMethod": self.id},
        )


@dataclass
class DIDDocument:
    """W3C DID Document."""

    id: str
    verification_methods: list[VerificationMethod]
    authentication: list[str]
    assertion_method: list[str]

    def get_verification_method(self, method_id: str) -> VerificationMethod | None:
        """Get a verification method by ID."""
        for vm in self.verification_methods:
            if vm.id == method_id:
                return vm
        return None

    def default_assertion_method(self) -> VerificationMethod | None:
        """First assertionMethod, or the first verification method."""
        for ref in self.assertion_method:
            vm = self.get_verification_method(ref)
            if vm is not None:
                return vm
        return self.verification_methods[0] if self.verification_methods else None


class DIDResolver:
    """Resolver for did:web DID method."""

    def __init__(
        self,
        timeout: float = 30.0,
        verify_ssl: bool = True,
    ) -> None:
        """Initialize the DID resolver.

        Args:
            timeout: HTTP request timeout in seconds.
            verify_ssl: Whether to verify SSL certificates.
        """
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._cache: dict[str, DIDDocument] = {}

    def _did_to_url(self, did: str) -> str:
        """Convert a did:web identifier to its resolution URL.

        did:web:example.com -> https://example.com/.well-known/did.json
        did:web:example.com:path:to:doc -> https://example.com/path/to/doc/did.json
        did:web:example.com%3A8080 -> https://example.com:8080/.well-known/did.json

        Raises:
            DIDResolutionError: If the DID format is invalid.
        """
        if not did.startswith("did:web:"):
            raise DIDResolutionError(f"Invalid did:web identifier: {did}")

        domain_path = did[8:].split("#")[0]
        parts = domain_path.split(":")

        # First part is the domain (with potential port encoded as %3A)
        domain = parts[0].replace("%3A", ":")
        if not domain:
            raise DIDResolutionError(f"Invalid did:web identifier: {did}")

        if len(parts) > 1:
            path = "/" + "/".join(quote(p, safe="") for p in parts[1:]) + "/did.json"
        else:
            path = "/.well-known/did.json"

        return f"https://{domain}{path}"

    def resolve(self, did: str, use_cache: bool = True) -> DIDDocument:
        """Resolve a did:web identifier to its DID Document.

        Args:
            did: The did:web identifier (e.g., "did:web:example.com").
            use_cache: Whether to use cached results.

        Raises:
            DIDResolutionError: If resolution fails.
        """
        base_did = did.split("#")[0]

        if use_cache and base_did in self._cache:
            return self._cache[base_did]

        url = self._did_to_url(did)

        try:
            with httpx.Client(timeout=self.timeout, verify=self.verify_ssl) as client:
                response = client.get(
                    url,
                    headers={"Accept": "application/did+ld+json, application/json"},
                )
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPStatusError as e:
            raise DIDResolutionError(
                f"HTTP error resolving {did}: {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise DIDResolutionError(f"Network error resolving {did}: {e}") from e
        except ValueError as e:
            raise DIDResolutionError(f"Invalid JSON in DID Document for {did}") from e

        doc = self._parse_did_document(data, base_did)

        if use_cache:
            self._cache[base_did] = doc

        return doc

    def resolve_public_key(self, verification_method: str) -> PublicKey:
        """Resolve a DID or DID URL to a verification key.

        A bare DID selects the document's first assertion method.

        Raises:
            DIDResolutionError: If resolution fails or no key is found.
        """
        doc = self.resolve(verification_method)

        if "#" in verification_method:
            vm = doc.get_verification_method(verification_method)
        else:
            vm = doc.default_assertion_method()

        if vm is None:
            raise DIDResolutionError(
                f"Verification method {verification_method} not found in DID Document"
            )
        return vm.to_public_key()

    def _parse_did_document(self, data: Any, did: str) -> DIDDocument:
        """Parse a DID Document from JSON.

        Raises:
            DIDResolutionError: If the document is invalid.
        """
        if not isinstance(data, dict):
            raise DIDResolutionError(f"DID Document for {did} is not an object")

        doc_id = data.get("id", "")
        if doc_id != did:
            raise DIDResolutionError(
                f"DID Document id mismatch: expected {did}, got {doc_id}"
            )

        verification_methods: list[VerificationMethod] = []
        for vm_data in data.get("verificationMethod", []):
            public_key_jwk = None
            if "publicKeyJwk" in vm_data:
                public_key_jwk = PublicKeyJWK.from_dict(vm_data["publicKeyJwk"])

            verification_methods.append(VerificationMethod(
                id=vm_data.get("id", ""),
                type=vm_data.get("type", ""),
                controller=vm_data.get("controller", ""),
                public_key_hex=vm_data.get("publicKeyHex"),
                public_key_jwk=public_key_jwk,
            ))

        return DIDDocument(
            id=doc_id,
            verification_methods=verification_methods,
            authentication=self._parse_verification_relationship(data.get("authentication", [])),
            assertion_method=self._parse_verification_relationship(data.get("assertionMethod", [])),
        )

    def _parse_verification_relationship(self, items: list[Any]) -> list[str]:
        """Extract verification method ids; items are references or embedded objects."""
        result: list[str] = []
        for item in items:
            if isinstance(item, str):
                result.append(item)
            elif isinstance(item, dict) and "id" in item:
                result.append(item["id"])
        return result

    def clear_cache(self) -> None:
        """Clear the resolution cache."""
        self._cache.clear()
