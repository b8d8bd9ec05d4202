"""Exceptions raised by the drift_client orchestration layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional


class DriftClientError(RuntimeError):
    """Base class for every error raised by this package."""


class NotSubscribed(DriftClientError):
    """Raised when the clearing-house client has no live account subscription."""


class AccountNotFound(DriftClientError, LookupError):
    """Raised when a required on-chain account does not exist yet."""

    def __init__(self, kind: str, address: object) -> None:
        super().__init__(f"{kind} account {address} does not exist")
        self.kind = kind
        self.address = address


class DerivationExhausted(DriftClientError):
    """Raised when no bump nonce yields an off-curve program address."""


class InvalidSeed(DriftClientError, ValueError):
    """Raised for seed paths the runtime would refuse (too many / too long)."""


class InvalidInvocation(DriftClientError, ValueError):
    """Raised when an invocation descriptor is assembled in an inconsistent shape."""


@dataclass(frozen=True)
class ProgramError:
    code: int
    name: Optional[str] = None
    msg: Optional[str] = None

    def __str__(self) -> str:
        if self.name:
            return f"{self.name} ({self.code}): {self.msg or ''}".rstrip(": ")
        return f"custom program error {self.code}"


class RemoteInvocationRejected(DriftClientError):
    """
    Raised when the ledger refuses a submitted invocation.

    The remote message is kept verbatim; ``logs`` and ``program_error`` are
    only populated when the RPC node reports them.
    """

    def __init__(
        self,
        method: str,
        reason: object,
        logs: Optional[List[str]] = None,
        program_error: Optional[ProgramError] = None,
    ) -> None:
        super().__init__(f"{method} rejected: {reason}")
        self.method = method
        self.reason = reason
        self.logs = list(logs or [])
        self.program_error = program_error


__all__ = [
    "DriftClientError",
    "NotSubscribed",
    "AccountNotFound",
    "DerivationExhausted",
    "InvalidSeed",
    "InvalidInvocation",
    "ProgramError",
    "RemoteInvocationRejected",
]
