"""
Keys for signing and verifying credential proofs.

Three variants share one interface, from most to least trusted:

- DirectKey: holds private key material and signs locally.
- SignerKey: holds no private material; forwards signing to an external
  Signer (vault, HSM, remote service).
- PublicKey: verification only.

Supported key types:
- Ed25519 (32-byte seed / 32-byte public key, hex encoded)
- secp256k1 (32-byte scalar / 33-byte compressed point, hex encoded,
  raw r||s signatures over SHA-256)

Signatures are base64url encoded without padding.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, runtime_checkable

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

from vc_credential.broker import CapabilityContract
from vc_credential.proof import ProofFormatError, base64url_decode, base64url_encode
from vc_credential.result import ErrorKind, Result

logger = logging.getLogger(__name__)

ED25519 = "Ed25519"
SECP256K1 = "secp256k1"
SUPPORTED_KEY_TYPES = (ED25519, SECP256K1)


class SigningError(Exception):
    """Raised by a capability-style sign call that cannot produce a signature."""


class UnsupportedKeyTypeError(ValueError):
    """Raised for key types with no signing implementation."""


@runtime_checkable
class Signer(Protocol):
    """External signing capability (vault, HSM, remote signer).

    ``sign`` receives the signing input and must return a base64url
    signature. ``get_algorithm`` is optional.
    """

    def sign(self, data: str) -> str: ...

    def get_public_key(self) -> str: ...


def _normalize_key_type(key_type: str) -> str:
    for known in SUPPORTED_KEY_TYPES:
        if key_type.lower() == known.lower():
            return known
    raise UnsupportedKeyTypeError(f"Unsupported key type: {key_type}")


def _ed25519_public_hex(private_key: Ed25519PrivateKey) -> str:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    ).hex()


def _secp256k1_private_key(private_key_hex: str) -> ec.EllipticCurvePrivateKey:
    return ec.derive_private_key(int(private_key_hex, 16), ec.SECP256K1())


def _secp256k1_public_hex(private_key: ec.EllipticCurvePrivateKey) -> str:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.CompressedPoint,
    ).hex()


def derive_public_key_hex(private_key_hex: str, key_type: str = ED25519) -> str:
    """Derive the hex public key for hex private key material."""
    key_type = _normalize_key_type(key_type)
    if key_type == ED25519:
        private_key = Ed25519PrivateKey.from_private_bytes(bytes.fromhex(private_key_hex))
        return _ed25519_public_hex(private_key)
    return _secp256k1_public_hex(_secp256k1_private_key(private_key_hex))


def sign_with_material(data: str, private_key_hex: str, key_type: str = ED25519) -> str:
    """Sign UTF-8 data with raw private key material.

    Returns:
        Base64url signature without padding.

    Raises:
        UnsupportedKeyTypeError: For unknown key types.
        ValueError: If the private key material is malformed.
    """
    key_type = _normalize_key_type(key_type)
    message = data.encode("utf-8")

    if key_type == ED25519:
        private_key = Ed25519PrivateKey.from_private_bytes(bytes.fromhex(private_key_hex))
        return base64url_encode(private_key.sign(message))

    ec_private_key = _secp256k1_private_key(private_key_hex)
    der_signature = ec_private_key.sign(message, ec.ECDSA(hashes.SHA256()))
    r, s = decode_dss_signature(der_signature)
    return base64url_encode(r.to_bytes(32, byteorder="big") + s.to_bytes(32, byteorder="big"))


def verify_with_material(
    data: str,
    signature: str,
    public_key_hex: str,
    key_type: str = ED25519,
) -> bool:
    """Verify a base64url signature against hex public key material.

    Never raises: malformed keys, signatures or unknown key types give False.
    """
    try:
        key_type = _normalize_key_type(key_type)
        signature_bytes = base64url_decode(signature)
        public_bytes = bytes.fromhex(public_key_hex)
        message = data.encode("utf-8")

        if key_type == ED25519:
            Ed25519PublicKey.from_public_bytes(public_bytes).verify(signature_bytes, message)
            return True

        # secp256k1: raw r||s (64 bytes) to DER
        if len(signature_bytes) != 64:
            return False
        r = int.from_bytes(signature_bytes[:32], byteorder="big")
        s = int.from_bytes(signature_bytes[32:], byteorder="big")
        ec_public_key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), public_bytes)
        ec_public_key.verify(encode_dss_signature(r, s), message, ec.ECDSA(hashes.SHA256()))
        return True
    except InvalidSignature:
        return False
    except (ProofFormatError, UnsupportedKeyTypeError, ValueError, TypeError, AttributeError):
        return False


def _new_key_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, kw_only=True)
class Key:
    """Identity fields shared by every key variant.

    Use the factories (``Key.create``, ``Key.create_with_signer``,
    ``Key.create_public``, ``generate_key``) rather than the base class.
    """

    public_key_hex: str
    id: str = field(default_factory=_new_key_id)
    type: str = ED25519
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        *,
        public_key_hex: str,
        private_key_hex: str,
        id: str | None = None,
        type: str = ED25519,
        meta: dict[str, Any] | None = None,
    ) -> DirectKey:
        """Create a key holding private material."""
        return DirectKey(
            id=id or _new_key_id(),
            public_key_hex=public_key_hex,
            private_key_hex=private_key_hex,
            type=type,
            meta=dict(meta or {}),
        )

    @classmethod
    def create_with_signer(
        cls,
        *,
        signer: Signer,
        public_key_hex: str | None = None,
        id: str | None = None,
        type: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> SignerKey:
        """Create a key that delegates signing to ``signer``.

        The public key defaults to ``signer.get_public_key()`` and the key
        type to ``signer.get_algorithm()`` when the signer has one, else
        Ed25519.
        """
        if type is None:
            get_algorithm = getattr(signer, "get_algorithm", None)
            type = get_algorithm() if callable(get_algorithm) else ED25519
        return SignerKey(
            id=id or _new_key_id(),
            public_key_hex=public_key_hex or signer.get_public_key(),
            signer=signer,
            type=type,
            meta=dict(meta or {}),
        )

    @classmethod
    def create_public(
        cls,
        *,
        public_key_hex: str,
        id: str | None = None,
        type: str = ED25519,
        meta: dict[str, Any] | None = None,
    ) -> PublicKey:
        """Create a verification-only key."""
        return PublicKey(
            id=id or _new_key_id(),
            public_key_hex=public_key_hex,
            type=type,
            meta=dict(meta or {}),
        )

    def can_sign(self) -> bool:
        return False

    def sign(self, data: str) -> Result[str]:
        return Result.fail(
            f"Key {self.id} cannot sign: no private key or signer available",
            ErrorKind.NO_SIGNING_MATERIAL,
        )

    def verify(self, data: str, signature: str) -> bool:
        """Verify a signature with this key's public material."""
        return verify_with_material(data, signature, self.public_key_hex, self.type)

    def get_public_key(self) -> str:
        return self.public_key_hex

    def to_public_key(self) -> PublicKey:
        """Return a verification-only copy without private material or signer."""
        return PublicKey(
            id=self.id,
            public_key_hex=self.public_key_hex,
            type=self.type,
            meta=dict(self.meta),
        )

    def to_verification_method(self, controller: str) -> dict[str, str]:
        """Describe this key as a DID verification method of ``controller``."""
        return {
            "id": f"{controller}#{self.id}",
            "type": f"{self.type}VerificationKey2020",
            "controller": controller,
            "publicKeyHex": self.public_key_hex,
        }

    def to_dict(self) -> dict[str, Any]:
        """Export the key as JSON-safe data. Private material is never included."""
        return {
            "id": self.id,
            "publicKeyHex": self.public_key_hex,
            "type": self.type,
            "meta": dict(self.meta),
            "canSign": self.can_sign(),
        }

    def teach(self) -> CapabilityContract:
        """Expose this key's operations for a capability broker to learn.

        The ``sign`` capability is only offered by keys that can sign; it
        returns the signature or raises SigningError.
        """
        capabilities: dict[str, Callable[..., Any]] = {
            "getPublicKey": self.get_public_key,
            "verify": self.verify,
        }
        if self.can_sign():
            capabilities["sign"] = self._sign_or_raise
        return CapabilityContract(provider_id=f"key:{self.id}", capabilities=capabilities)

    def _sign_or_raise(self, data: str) -> str:
        result = self.sign(data)
        if not result.success:
            raise SigningError(result.error)
        return result.data  # type: ignore[return-value]


@dataclass(frozen=True, kw_only=True)
class DirectKey(Key):
    """Key with private material that signs locally."""

    private_key_hex: str = field(repr=False)

    def can_sign(self) -> bool:
        return True

    def sign(self, data: str) -> Result[str]:
        try:
            return Result.ok(sign_with_material(data, self.private_key_hex, self.type))
        except UnsupportedKeyTypeError as e:
            return Result.fail("Cannot sign", ErrorKind.NO_SIGNING_MATERIAL, cause=e)
        except (ValueError, TypeError) as e:
            return Result.fail(f"Key {self.id} has invalid private key material", ErrorKind.INTERNAL, cause=e)


@dataclass(frozen=True, kw_only=True)
class SignerKey(Key):
    """Key that forwards signing to an external Signer."""

    signer: Signer = field(repr=False)

    def can_sign(self) -> bool:
        return True

    def sign(self, data: str) -> Result[str]:
        logger.debug("Delegating signature for key %s to %s", self.id, type(self.signer).__name__)
        try:
            signature = self.signer.sign(data)
        except Exception as e:
            return Result.fail("Signer failed", ErrorKind.INTERNAL, cause=e)

        if not isinstance(signature, str) or not signature:
            return Result.fail(
                f"Signer returned an invalid signature of type {type(signature).__name__}",
                ErrorKind.INTERNAL,
            )
        return Result.ok(signature)

    def verify(self, data: str, signature: str) -> bool:
        if self.type not in SUPPORTED_KEY_TYPES:
            # Algorithms unknown here can only be checked by the signer itself
            delegate = getattr(self.signer, "verify", None)
            if callable(delegate):
                try:
                    return bool(delegate(data, signature))
                except Exception:
                    logger.debug("Signer verify failed for key %s", self.id, exc_info=True)
                    return False
        return super().verify(data, signature)


@dataclass(frozen=True, kw_only=True)
class PublicKey(Key):
    """Verification-only key."""


class DirectSigner:
    """Signer backed by raw private key material.

    Lets direct material be used wherever a Signer is expected, e.g. to
    build a SignerKey in tests or development setups.
    """

    def __init__(
        self,
        private_key_hex: str,
        public_key_hex: str | None = None,
        algorithm: str = ED25519,
    ) -> None:
        self._private_key_hex = private_key_hex
        self._algorithm = _normalize_key_type(algorithm)
        self._public_key_hex = public_key_hex or derive_public_key_hex(private_key_hex, self._algorithm)

    def sign(self, data: str) -> str:
        return sign_with_material(data, self._private_key_hex, self._algorithm)

    def verify(self, data: str, signature: str) -> bool:
        return verify_with_material(data, signature, self._public_key_hex, self._algorithm)

    def get_public_key(self) -> str:
        return self._public_key_hex

    def get_algorithm(self) -> str:
        return self._algorithm


def generate_key(
    key_type: str = ED25519,
    *,
    id: str | None = None,
    meta: dict[str, Any] | None = None,
) -> DirectKey:
    """Generate a DirectKey with fresh private material.

    Args:
        key_type: "Ed25519" or "secp256k1".
        id: Key identifier. Generated when omitted.
        meta: Free-form key metadata.

    Raises:
        UnsupportedKeyTypeError: For other key types.
    """
    key_type = _normalize_key_type(key_type)

    if key_type == ED25519:
        private_key = Ed25519PrivateKey.generate()
        private_key_hex = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        ).hex()
        public_key_hex = _ed25519_public_hex(private_key)
    else:
        ec_private_key = ec.generate_private_key(ec.SECP256K1())
        private_key_hex = ec_private_key.private_numbers().private_value.to_bytes(32, byteorder="big").hex()
        public_key_hex = _secp256k1_public_hex(ec_private_key)

    return Key.create(
        id=id,
        public_key_hex=public_key_hex,
        private_key_hex=private_key_hex,
        type=key_type,
        meta=meta,
    )


def is_direct_key(key: Key) -> bool:
    return isinstance(key, DirectKey)


def is_signer_key(key: Key) -> bool:
    return isinstance(key, SignerKey)


def is_public_key(key: Key) -> bool:
    return isinstance(key, PublicKey)
