"""
Verifiable Credentials issuance and verification.

Issues W3C credentials carrying a detached-JWT proof (JwtProof2020) and
verifies them again.

Issuing:
1. Check a signing capability is available (held key or learned ``sign``)
2. Build the credential payload
3. Encode header/payload, sign the signing input, attach the proof

Verifying (stops at the first failure):
1. Proof present, proof type
2. Proof parsing
3. Signature over the signing input taken from the proof itself
4. Field binding: the signed ``vc`` claim must match the outer credential
5. Expiration (optional, on by default)
6. Expected issuer (optional)
"""

from __future__ import annotations

import copy
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from vc_credential.broker import (
    GET_PUBLIC_KEY,
    SIGN,
    VERIFY,
    CapabilityBroker,
    CapabilityContract,
    MissingCapabilityError,
)
from vc_credential.keys import Key
from vc_credential.proof import (
    PROOF_TYPE,
    ParsedJwt,
    ProofFormatError,
    assemble_jwt,
    build_signing_input,
    create_proof,
    format_timestamp,
    is_base64url,
    parse_proof,
    parse_timestamp,
)
from vc_credential.result import ErrorKind, Result

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT = ["https://www.w3.org/2018/credentials/v1"]
BASE_CREDENTIAL_TYPE = "VerifiableCredential"
JWT_PROOF_FORMAT = "jwt"
DEFAULT_ID_NAMESPACE = "urn:credential"

# Engine operation names offered by teach(). Must never equal sign, verify or
# getPublicKey.
ISSUE_CREDENTIAL = "issueCredential"
VERIFY_CREDENTIAL = "verifyCredential"
VALIDATE_CREDENTIAL = "validateCredential"
ENGINE_CAPABILITIES = frozenset({ISSUE_CREDENTIAL, VERIFY_CREDENTIAL, VALIDATE_CREDENTIAL})

REQUIRED_FIELDS = (
    "@context",
    "id",
    "type",
    "issuer",
    "issuanceDate",
    "credentialSubject",
    "proof",
)


@dataclass
class IssueOptions:
    """Optional inputs for issuing a credential."""

    vc_id: str | None = None
    context: list[str] | None = None
    issuance_date: str | datetime | None = None
    expiration_date: str | datetime | None = None
    proof_format: str = JWT_PROOF_FORMAT
    meta: dict[str, Any] | None = None


@dataclass
class VerifyOptions:
    """Optional checks applied after the signature is verified."""

    check_expiration: bool = True
    expected_issuer: str | None = None


@dataclass
class VerificationResult:
    """Successful verification outcome."""

    verified: bool
    issuer: str | None
    subject: str | None
    issuance_date: str | None
    expiration_date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "verified": self.verified,
            "issuer": self.issuer,
            "subject": self.subject,
            "issuanceDate": self.issuance_date,
            "expirationDate": self.expiration_date,
        }


def generate_credential_id(credential_type: str, namespace: str = DEFAULT_ID_NAMESPACE) -> str:
    """Generate a unique credential id, e.g. ``urn:credential:IdentityCredential:<hex>``."""
    return f"{namespace}:{credential_type}:{uuid.uuid4().hex}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp_value(value: str | datetime) -> str:
    if isinstance(value, datetime):
        return format_timestamp(value)
    return value


def _subject_holder_id(subject: Any) -> str | None:
    if not isinstance(subject, dict):
        return None
    holder = subject.get("holder")
    if not isinstance(holder, dict):
        return None
    holder_id = holder.get("id")
    return holder_id if isinstance(holder_id, str) else None


def create_credential_payload(
    subject: dict[str, Any],
    credential_type: str | list[str],
    issuer_id: str,
    options: IssueOptions | None = None,
    *,
    now: datetime | None = None,
    id_namespace: str = DEFAULT_ID_NAMESPACE,
) -> dict[str, Any]:
    """Build a credential without its proof.

    Args:
        subject: Claims about the subject. Must contain ``holder.id``.
        credential_type: One specific type or a list of them. The base
            ``VerifiableCredential`` type is always placed first.
        issuer_id: Opaque issuer identifier.
        options: Id, extra contexts, dates and metadata.
        now: Issuance time used when ``options.issuance_date`` is unset.
        id_namespace: Prefix for generated credential ids.

    Returns:
        The credential as a new dict. ``expirationDate`` and ``meta`` are
        omitted when not supplied.
    """
    options = options or IssueOptions()
    types = [credential_type] if isinstance(credential_type, str) else list(credential_type)
    specific_types = [t for t in types if t != BASE_CREDENTIAL_TYPE]

    context = list(DEFAULT_CONTEXT)
    for uri in options.context or []:
        if uri not in context:
            context.append(uri)

    app_type = specific_types[0] if specific_types else "Generic"
    issuance_date = options.issuance_date or (now or _utcnow())

    payload: dict[str, Any] = {
        "@context": context,
        "id": options.vc_id or generate_credential_id(app_type, id_namespace),
        "type": [BASE_CREDENTIAL_TYPE, *specific_types],
        "issuer": issuer_id,
        "issuanceDate": _timestamp_value(issuance_date),
    }
    if options.expiration_date:
        payload["expirationDate"] = _timestamp_value(options.expiration_date)
    payload["credentialSubject"] = copy.deepcopy(subject)
    if options.meta is not None:
        payload["meta"] = copy.deepcopy(options.meta)
    return payload


class CredentialEngine:
    """Issues and verifies credentials with a held key or learned capabilities.

    The engine keeps no state between calls apart from the capability table
    filled by ``learn``, which is a setup step.
    """

    def __init__(
        self,
        key: Key | None = None,
        broker: CapabilityBroker | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
        id_namespace: str = DEFAULT_ID_NAMESPACE,
    ) -> None:
        """Initialize the engine.

        Args:
            key: Key used for signing and, by default, for verification.
            broker: Capability table. Created empty if not provided.
            clock: Returns the current time; used for issuance dates and
                expiration checks.
            id_namespace: Prefix for generated credential ids.
        """
        self.key = key
        self.broker = broker or CapabilityBroker()
        self.clock = clock or _utcnow
        self.id_namespace = id_namespace

    # Capabilities

    def learn(self, contracts: list[CapabilityContract]) -> None:
        """Learn sign / verify / getPublicKey from providers."""
        self.broker.learn(contracts)

    def can(self, name: str) -> bool:
        """Check whether an operation is available from the key or the broker."""
        if self.key is not None:
            if name == SIGN and self.key.can_sign():
                return True
            if name in (VERIFY, GET_PUBLIC_KEY):
                return True
        return self.broker.can(name)

    def teach(self) -> CapabilityContract:
        """Expose this engine's operations for a further consumer."""
        return CapabilityContract(
            provider_id="credential-engine",
            capabilities={
                ISSUE_CREDENTIAL: self.issue,
                VERIFY_CREDENTIAL: self.verify,
                VALIDATE_CREDENTIAL: self.validate_structure,
            },
        )

    # Issuance

    def issue(
        self,
        subject: dict[str, Any],
        credential_type: str | list[str],
        issuer_id: str,
        options: IssueOptions | None = None,
    ) -> Result[dict[str, Any]]:
        """Issue a signed credential.

        Args:
            subject: Claims about the subject, with ``holder.id``.
            credential_type: Specific credential type(s).
            issuer_id: Issuer identifier; also the proof's verificationMethod.
            options: Issuance options.

        Returns:
            Result holding the new credential, or the reason it failed.
        """
        options = options or IssueOptions()

        if not (self.can(SIGN) and self.can(GET_PUBLIC_KEY)):
            return self._fail(
                "Missing sign capability: provide a signing key or learn from a signer",
                ErrorKind.MISSING_CAPABILITY,
            )

        if options.proof_format != JWT_PROOF_FORMAT:
            return self._fail(
                f"Unsupported proof format: {options.proof_format}",
                ErrorKind.UNSUPPORTED_PROOF_FORMAT,
            )

        invalid = self._check_issue_inputs(subject, credential_type, issuer_id, options)
        if invalid is not None:
            return invalid

        payload = create_credential_payload(
            subject,
            credential_type,
            issuer_id,
            options,
            now=self.clock(),
            id_namespace=self.id_namespace,
        )

        try:
            signing_input = build_signing_input(payload, issuer_id)
        except ProofFormatError as e:
            return self._fail("Failed to build JWT proof", ErrorKind.INTERNAL, cause=e)

        signed = self._sign(signing_input.signing_input)
        if not signed.success:
            return signed

        credential = dict(payload)
        credential["proof"] = create_proof(assemble_jwt(signing_input, signed.data), issuer_id)

        logger.info(
            "Issued credential %s",
            credential["id"],
            extra={"credential_id": credential["id"], "issuer": issuer_id},
        )
        return Result.ok(credential)

    def _check_issue_inputs(
        self,
        subject: Any,
        credential_type: Any,
        issuer_id: Any,
        options: IssueOptions,
    ) -> Result[Any] | None:
        if not isinstance(issuer_id, str) or not issuer_id:
            return self._fail("Issuer id must be a non-empty string", ErrorKind.STRUCTURAL_VALIDATION)
        if _subject_holder_id(subject) is None:
            return self._fail(
                "credentialSubject must have a holder with id property",
                ErrorKind.STRUCTURAL_VALIDATION,
            )

        types = [credential_type] if isinstance(credential_type, str) else credential_type
        if not isinstance(types, list) or not types or not all(isinstance(t, str) and t for t in types):
            return self._fail(
                "Credential type must be a non-empty string or list of strings",
                ErrorKind.STRUCTURAL_VALIDATION,
            )

        for name, value in (
            ("issuanceDate", options.issuance_date),
            ("expirationDate", options.expiration_date),
        ):
            if value is None:
                continue
            try:
                parse_timestamp(value)
            except (ValueError, TypeError) as e:
                return self._fail(f"Invalid {name}", ErrorKind.STRUCTURAL_VALIDATION, cause=e)
        return None

    def _sign(self, data: str) -> Result[str]:
        if self.key is not None and self.key.can_sign():
            signed = self.key.sign(data)
            if not signed.success:
                return self._fail(f"Failed to sign credential: {signed.error}", signed.kind or ErrorKind.INTERNAL)
            signature = signed.data
        else:
            try:
                signature = self.broker.execute(SIGN, data)
            except MissingCapabilityError as e:
                return self._fail("Cannot sign credential", ErrorKind.MISSING_CAPABILITY, cause=e)
            except Exception as e:
                return self._fail("Learned sign capability failed", ErrorKind.INTERNAL, cause=e)

        if not is_base64url(signature):
            return self._fail("Signer returned a signature that is not base64url", ErrorKind.INTERNAL)
        return Result.ok(signature)

    # Verification

    def verify(
        self,
        credential: dict[str, Any],
        key: Key | None = None,
        options: VerifyOptions | None = None,
    ) -> Result[VerificationResult]:
        """Verify a credential.

        Args:
            credential: The credential to verify. It is not modified.
            key: Verification key. Defaults to the engine's key, then to a
                learned ``verify`` capability.
            options: Expiration and issuer checks.

        Returns:
            Result holding a VerificationResult, or the first failed check.
        """
        try:
            return self._verify(credential, key, options or VerifyOptions())
        except Exception as e:
            return self._fail("Failed to verify credential", ErrorKind.INTERNAL, cause=e)

    def _verify(
        self,
        credential: dict[str, Any],
        key: Key | None,
        options: VerifyOptions,
    ) -> Result[VerificationResult]:
        if not isinstance(credential, dict):
            return self._fail("Credential must be an object", ErrorKind.STRUCTURAL_VALIDATION)
        credential = copy.deepcopy(credential)

        proof = credential.get("proof")
        if not isinstance(proof, dict):
            return self._fail("Missing proof", ErrorKind.STRUCTURAL_VALIDATION)

        # Proof type
        proof_type = proof.get("type")
        if proof_type != PROOF_TYPE:
            return self._fail(f"Unsupported proof type: {proof_type}", ErrorKind.UNSUPPORTED_PROOF_TYPE)

        # Parse
        try:
            parsed = parse_proof(proof.get("jwt"))
        except ProofFormatError as e:
            return self._fail("Malformed proof", ErrorKind.MALFORMED_PROOF, cause=e)
        if parsed.vc is None:
            return self._fail("Malformed proof: JWT payload has no vc claim", ErrorKind.MALFORMED_PROOF)

        # Signature
        checked = self._check_signature(parsed, key)
        if not checked.success:
            return checked

        # Field binding
        bound = self._check_field_binding(credential, parsed.vc)
        if not bound.success:
            return bound

        # Expiration
        if options.check_expiration:
            fresh = self._check_expiration(parsed)
            if not fresh.success:
                return fresh

        # Issuer
        issuer = parsed.payload.get("iss")
        if options.expected_issuer and issuer != options.expected_issuer:
            return self._fail(f"Unexpected issuer: {issuer}", ErrorKind.UNEXPECTED_ISSUER)

        result = VerificationResult(
            verified=True,
            issuer=issuer,
            subject=_subject_holder_id(credential.get("credentialSubject")),
            issuance_date=credential.get("issuanceDate"),
            expiration_date=credential.get("expirationDate"),
        )
        logger.info(
            "Verified credential %s",
            credential.get("id"),
            extra={"credential_id": credential.get("id"), "issuer": issuer},
        )
        return Result.ok(result)

    def _check_signature(self, parsed: ParsedJwt, key: Key | None) -> Result[bool]:
        verification_key = key or self.key
        if verification_key is not None:
            valid = verification_key.verify(parsed.signing_input, parsed.signature)
        elif self.broker.can(VERIFY):
            try:
                valid = self.broker.execute(VERIFY, parsed.signing_input, parsed.signature)
            except Exception as e:
                return self._fail("Learned verify capability failed", ErrorKind.INTERNAL, cause=e)
            if not isinstance(valid, bool):
                return self._fail(
                    f"Learned verify capability returned {type(valid).__name__}, expected bool",
                    ErrorKind.INTERNAL,
                )
        else:
            return self._fail(
                "Missing verify capability: provide a verification key or learn from a key provider",
                ErrorKind.MISSING_CAPABILITY,
            )

        if not valid:
            return self._fail("Invalid signature", ErrorKind.INVALID_SIGNATURE)
        return Result.ok(True)

    def _canonicalize_json(self, data: Any) -> str:
        """Canonical JSON used to compare signed and outer field values."""
        return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def _check_field_binding(self, credential: dict[str, Any], signed_vc: dict[str, Any]) -> Result[bool]:
        outer = {k: v for k, v in credential.items() if k != "proof"}

        for name, signed_value in signed_vc.items():
            if name not in outer:
                return self._fail(
                    f"Field mismatch: '{name}' is missing from the credential",
                    ErrorKind.FIELD_MISMATCH,
                )
            try:
                matches = self._canonicalize_json(outer[name]) == self._canonicalize_json(signed_value)
            except (TypeError, ValueError):
                matches = False
            if not matches:
                return self._fail(
                    f"Field mismatch: '{name}' differs from the signed credential",
                    ErrorKind.FIELD_MISMATCH,
                )

        for name in outer:
            if name not in signed_vc:
                return self._fail(
                    f"Field mismatch: '{name}' is not covered by the signed credential",
                    ErrorKind.FIELD_MISMATCH,
                )
        return Result.ok(True)

    def _check_expiration(self, parsed: ParsedJwt) -> Result[bool]:
        # The signed expirationDate keeps sub-second precision that exp drops
        signed_expiration = parsed.vc.get("expirationDate") if parsed.vc else None
        exp = parsed.payload.get("exp")
        if signed_expiration:
            try:
                deadline = parse_timestamp(signed_expiration)
            except (ValueError, TypeError) as e:
                return self._fail("Malformed proof: invalid expirationDate", ErrorKind.MALFORMED_PROOF, cause=e)
        elif exp is None:
            return Result.ok(True)
        elif isinstance(exp, bool) or not isinstance(exp, (int, float)):
            return self._fail("Malformed proof: exp claim is not a number", ErrorKind.MALFORMED_PROOF)
        else:
            deadline = datetime.fromtimestamp(exp, tz=timezone.utc)

        if parse_timestamp(self.clock()) > deadline:
            return self._fail(f"Credential has expired ({format_timestamp(deadline)})", ErrorKind.EXPIRED)
        return Result.ok(True)

    # Structure

    def validate_structure(self, credential: Any) -> Result[dict[str, Any]]:
        """Check a candidate credential's shape without any cryptography."""
        if not isinstance(credential, dict):
            return Result.fail("Credential must be an object", ErrorKind.STRUCTURAL_VALIDATION)

        for name in REQUIRED_FIELDS:
            if name not in credential:
                return Result.fail(f"Missing required field: {name}", ErrorKind.STRUCTURAL_VALIDATION)

        if not isinstance(credential["@context"], list):
            return Result.fail("@context must be an array", ErrorKind.STRUCTURAL_VALIDATION)

        types = credential["type"]
        if not isinstance(types, list) or not types or types[0] != BASE_CREDENTIAL_TYPE:
            return Result.fail(
                f"type must be an array starting with '{BASE_CREDENTIAL_TYPE}'",
                ErrorKind.STRUCTURAL_VALIDATION,
            )

        issuer = credential["issuer"]
        if not (isinstance(issuer, str) and issuer) and not (isinstance(issuer, dict) and issuer.get("id")):
            return Result.fail("issuer must be an identifier string", ErrorKind.STRUCTURAL_VALIDATION)

        if not isinstance(credential["credentialSubject"], dict):
            return Result.fail("credentialSubject must be an object", ErrorKind.STRUCTURAL_VALIDATION)
        if _subject_holder_id(credential["credentialSubject"]) is None:
            return Result.fail(
                "credentialSubject must have a holder with id property",
                ErrorKind.STRUCTURAL_VALIDATION,
            )

        proof = credential["proof"]
        if not isinstance(proof, dict) or "type" not in proof:
            return Result.fail("proof must be an object with type property", ErrorKind.STRUCTURAL_VALIDATION)

        return Result.ok(credential)

    def _fail(self, message: str, kind: ErrorKind, cause: BaseException | None = None) -> Result[Any]:
        result = Result.fail(message, kind, cause=cause)
        logger.warning("%s", result.error, extra={"error_kind": kind.value})
        return result


def issue_credential(
    key: Key,
    subject: dict[str, Any],
    credential_type: str | list[str],
    issuer_id: str,
    options: IssueOptions | None = None,
) -> Result[dict[str, Any]]:
    """Convenience function to issue a credential with a key."""
    return CredentialEngine(key=key).issue(subject, credential_type, issuer_id, options)


def verify_credential(
    key: Key,
    credential: dict[str, Any],
    options: VerifyOptions | None = None,
) -> Result[VerificationResult]:
    """Convenience function to verify a credential with a key."""
    return CredentialEngine(key=key).verify(credential, options=options)
