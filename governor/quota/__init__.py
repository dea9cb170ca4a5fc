"""Admission control: quota policies, identity keys and the counter ledger."""

from governor.quota.identity import build_identity_key
from governor.quota.ledger import QuotaDecision, QuotaLedger
from governor.quota.policies import (
    KeyStrategy,
    QuotaAlgorithm,
    QuotaBinding,
    QuotaPolicy,
    QuotaPolicyRegistry,
    RoleLimits,
)

__all__ = [
    "KeyStrategy",
    "QuotaAlgorithm",
    "QuotaBinding",
    "QuotaDecision",
    "QuotaLedger",
    "QuotaPolicy",
    "QuotaPolicyRegistry",
    "RoleLimits",
    "build_identity_key",
]
