"""
Result values for credential operations.

Every fallible engine operation returns a Result instead of raising, so
expected failures (bad signature, expired credential, missing capability)
are ordinary values the caller branches on.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(Enum):
    """Failure categories reported by the engine."""

    MISSING_CAPABILITY = "missing_capability"
    NO_SIGNING_MATERIAL = "no_signing_material"
    UNSUPPORTED_PROOF_FORMAT = "unsupported_proof_format"
    UNSUPPORTED_PROOF_TYPE = "unsupported_proof_type"
    MALFORMED_PROOF = "malformed_proof"
    INVALID_SIGNATURE = "invalid_signature"
    FIELD_MISMATCH = "field_mismatch"
    EXPIRED = "expired"
    UNEXPECTED_ISSUER = "unexpected_issuer"
    STRUCTURAL_VALIDATION = "structural_validation"
    INTERNAL = "internal"


class ResultError(Exception):
    """Raised when unwrapping a failed Result."""


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an operation: a value on success, a message on failure."""

    success: bool
    data: T | None = None
    error: str | None = None
    kind: ErrorKind | None = None
    cause: BaseException | None = None

    @classmethod
    def ok(cls, data: T) -> Result[T]:
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        message: str,
        kind: ErrorKind = ErrorKind.INTERNAL,
        cause: BaseException | None = None,
    ) -> Result[Any]:
        """Build a failed Result.

        Args:
            message: Human-readable description of the failure.
            kind: Taxonomy category of the failure.
            cause: Underlying exception, if any. Its text is appended to
                the message.

        Returns:
            A Result with ``success`` set to False.
        """
        if cause is not None:
            message = f"{message}: {cause}"
        return cls(success=False, error=message, kind=kind, cause=cause)

    @property
    def is_ok(self) -> bool:
        return self.success

    @property
    def is_err(self) -> bool:
        return not self.success

    def unwrap(self) -> T:
        """Return the value, or raise ResultError if this is a failure."""
        if not self.success:
            raise ResultError(self.error or "Result is a failure")
        return self.data  # type: ignore[return-value]
