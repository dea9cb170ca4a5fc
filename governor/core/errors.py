"""Application-level exception types.

This module defines the governor's error taxonomy. Store-layer failures are
absorbed by the cache and quota components; only policy configuration errors
are fatal, and only at startup.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from governor.quota.ledger import QuotaDecision


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    key: str
    policy: str
    backend: str
    operation: str
    retry_after: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class StoreUnavailableError(AppError):
    """Raised when the key-value backend cannot be reached or times out."""


class CacheCorruptionError(AppError):
    """Raised when a stored value cannot be decoded."""


class InvalidPolicyConfigurationError(AppError):
    """Raised at startup when cache or quota policies are inconsistent."""


class AuthenticationAppError(AppError):
    """Raised when the caller lacks the role an administrative route needs."""


class QuotaExceededError(AppError):
    """Raised by route dependencies when a quota denies the request.

    Carries the decision so the handler can render retry metadata.
    """

    def __init__(self, decision: "QuotaDecision", message: str) -> None:
        self.decision = decision
        super().__init__(
            code="quota_exceeded",
            message=message,
            details={
                "policy": decision.policy,
                "retry_after": decision.retry_after_seconds or 0,
            },
        )
