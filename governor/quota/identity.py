"""Identity keys used to attribute quota consumption."""

from __future__ import annotations

from governor.cache.keys import RequestDescriptor
from governor.quota.policies import KeyStrategy


def build_identity_key(strategy: KeyStrategy, descriptor: RequestDescriptor) -> str:
    """Build the limiter key for the current request.

    Args:
        strategy: Policy key strategy.
        descriptor: Request descriptor carrying identity and client address.

    Returns:
        ``user:{id}`` for authenticated callers under the IDENTITY strategy,
        ``ip:{address}`` otherwise.
    """

    if strategy is KeyStrategy.IDENTITY and descriptor.is_authenticated:
        return f"user:{descriptor.identity}"
    return f"ip:{descriptor.client_ip}"
