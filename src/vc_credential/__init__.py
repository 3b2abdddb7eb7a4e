"""
vc-credential - Verifiable Credentials issuance and verification library.

Supports:
- W3C Verifiable Credentials with detached-JWT proofs (JwtProof2020)
- Direct, signer-backed (vault/HSM) and public-only keys
- Ed25519 and secp256k1 key material
- Runtime capability learning (sign / verify / getPublicKey)
- did:web public key resolution
"""

from vc_credential.broker import CapabilityBroker, CapabilityContract, MissingCapabilityError
from vc_credential.credential import (
    ENGINE_CAPABILITIES,
    CredentialEngine,
    IssueOptions,
    VerificationResult,
    VerifyOptions,
    issue_credential,
    verify_credential,
)
from vc_credential.did_resolver import DIDResolutionError, DIDResolver
from vc_credential.keys import (
    DirectKey,
    DirectSigner,
    Key,
    PublicKey,
    Signer,
    SignerKey,
    SigningError,
    generate_key,
)
from vc_credential.proof import ProofFormatError, parse_proof
from vc_credential.result import ErrorKind, Result
from vc_credential.utils import parse_did

__version__ = "0.1.0"

__all__ = [
    "CapabilityBroker",
    "CapabilityContract",
    "CredentialEngine",
    "DIDResolutionError",
    "DIDResolver",
    "ENGINE_CAPABILITIES",
    "DirectKey",
    "DirectSigner",
    "ErrorKind",
    "IssueOptions",
    "Key",
    "MissingCapabilityError",
    "ProofFormatError",
    "PublicKey",
    "Result",
    "Signer",
    "SignerKey",
    "SigningError",
    "VerificationResult",
    "VerifyOptions",
    "generate_key",
    "issue_credential",
    "parse_did",
    "parse_proof",
    "verify_credential",
]
