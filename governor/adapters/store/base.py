"""Key-value store interface shared by the response cache and quota ledger.

Callers depend on this abstraction only, so the backend (in-process dict,
Redis, or both) is chosen once at startup and injected.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Literal


class _Missing:
    """Marker type for keys that are absent or expired."""

    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()

BackendType = Literal["local", "shared"]


class AbstractKVStore(ABC):
    """Interface for TTL-aware key-value stores.

    Values are strings or JSON-compatible documents. Shared implementations
    raise ``StoreUnavailableError`` when the backend cannot be reached.
    """

    backend_type: BackendType

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Return the stored value, or ``MISSING`` when absent or expired."""
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store ``value`` unconditionally.

        Args:
            key: Key to write.
            value: String or JSON-compatible document.
            ttl_seconds: Expiry in seconds; ``None`` or ``0`` uses the store default.
        """
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete ``key``. Deleting an absent key is not an error."""
        raise NotImplementedError

    @abstractmethod
    async def exists(self, key: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def scan(self, pattern: str) -> list[str]:
        """Return keys matching a glob pattern, capped at the store's scan limit."""
        raise NotImplementedError

    @abstractmethod
    async def flush_all(self) -> None:
        """Remove every key in the store's namespace."""
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> bool:
        """Liveness probe. Never raises."""
        raise NotImplementedError

    @abstractmethod
    async def incr(self, key: str, amount: int = 1, ttl_seconds: int | None = None) -> int:
        """Atomically add ``amount`` to an integer counter.

        The TTL is attached when the counter is created and is not extended
        by later increments.

        Returns:
            The counter value after the increment.
        """
        raise NotImplementedError

    @abstractmethod
    async def increment_within(
        self,
        key: str,
        amount: int,
        ceiling: int,
        ttl_seconds: int,
    ) -> tuple[bool, int]:
        """Atomically increment only if the result stays within ``ceiling``.

        Returns:
            Tuple of (applied, counter value after the call). When not applied
            the counter is left unchanged.
        """
        raise NotImplementedError

    @abstractmethod
    async def ttl(self, key: str) -> int | None:
        """Remaining lifetime in whole seconds, or ``None`` if absent or persistent."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release backend resources."""
        return None
