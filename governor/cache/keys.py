"""Request descriptors and deterministic cache key derivation.

Keys have the shape ``{prefix}:{identity}:{method}:{path}:{query}:{body}``.
Each component is escaped so keys contain only ``[A-Za-z0-9:_-]``:
alphanumerics and ``-`` pass through, every other character becomes ``_``
followed by the upper-case hex of its UTF-8 bytes. Escaping ``:`` and ``_``
too keeps components unambiguous, so glob patterns can target one identity
or one path, and distinct normalized queries never share a key.

Body fingerprints are truncated to a fixed length to keep keys bounded.
Bodies that only differ beyond that bound share a key; caching is advisory,
so this is accepted.
"""

from __future__ import annotations

import json
import string
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

ANONYMOUS = "anonymous"
DEFAULT_BODY_DIGEST_LENGTH = 100

_SAFE_CHARS = frozenset(string.ascii_letters + string.digits + "-")

QueryInput = Mapping[str, Any] | Iterable[tuple[str, Any]] | None


def escape_component(value: str) -> str:
    """Escape a key component to the allowed character set.

    Examples:
        >>> escape_component("/api/posts")
        '_2Fapi_2Fposts'
        >>> escape_component("user-42")
        'user-42'
    """

    return "".join(
        ch if ch in _SAFE_CHARS else "_" + ch.encode("utf-8").hex().upper()
        for ch in value
    )


def normalize_path(path: str) -> str:
    if not path:
        return "/"
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return path


def normalize_query(query: QueryInput) -> tuple[tuple[str, str], ...]:
    """Sort query parameters into a canonical tuple of pairs.

    Multi-valued parameters keep every value; lists in a mapping expand to
    one pair per element.
    """

    if not query:
        return ()

    items = query.items() if isinstance(query, Mapping) else query
    pairs: list[tuple[str, str]] = []
    for key, value in items:
        if isinstance(value, (list, tuple)):
            pairs.extend((str(key), str(v)) for v in value)
        else:
            pairs.append((str(key), str(value)))
    return tuple(sorted(pairs))


def fingerprint_body(body: Any, length: int = DEFAULT_BODY_DIGEST_LENGTH) -> str:
    """Build a bounded-length canonical fingerprint of a request body.

    JSON bodies are re-serialized with sorted keys so member order does not
    matter; other payloads are used as text.
    """

    if body is None or body == b"" or body == "":
        return ""

    if isinstance(body, (bytes, bytearray, str)):
        text = body.decode("utf-8", errors="replace") if isinstance(body, (bytes, bytearray)) else body
        try:
            parsed = json.loads(text)
        except ValueError:
            canonical = text
        else:
            canonical = json.dumps(parsed, sort_keys=True, separators=(",", ":"))
    else:
        canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)

    return canonical[:length]


@dataclass(frozen=True)
class RequestDescriptor:
    """Logical view of a request used to derive cache and quota keys.

    ``role`` and ``client_ip`` are admission context only; they never
    enter the cache key.
    """

    method: str
    path: str
    query: tuple[tuple[str, str], ...] = ()
    identity: str = ANONYMOUS
    body_digest: str = ""
    role: str | None = None
    client_ip: str = "unknown"

    @classmethod
    def build(
        cls,
        method: str,
        path: str,
        query: QueryInput = None,
        identity: str | None = None,
        body: Any = None,
        *,
        role: str | None = None,
        client_ip: str | None = None,
        body_digest_length: int = DEFAULT_BODY_DIGEST_LENGTH,
    ) -> "RequestDescriptor":
        return cls(
            method=method.upper(),
            path=normalize_path(path),
            query=normalize_query(query),
            identity=identity or ANONYMOUS,
            body_digest=fingerprint_body(body, body_digest_length),
            role=role,
            client_ip=client_ip or "unknown",
        )

    @property
    def is_authenticated(self) -> bool:
        return self.identity != ANONYMOUS

    @property
    def query_string(self) -> str:
        return urlencode(self.query)


def build_cache_key(descriptor: RequestDescriptor, prefix: str = "cache") -> str:
    """Derive the cache key for a request descriptor.

    Args:
        descriptor: Normalized request descriptor.
        prefix: Key namespace for cached responses.

    Returns:
        Key containing only alphanumerics, ``:``, ``_`` and ``-``.
    """

    parts = (
        descriptor.identity,
        descriptor.method,
        descriptor.path,
        descriptor.query_string,
        descriptor.body_digest,
    )
    return ":".join([prefix, *(escape_component(p) for p in parts)])


def path_glob_to_key_pattern(path_glob: str, prefix: str = "cache") -> str:
    """Convert a path glob into a key glob over every identity's cached GETs.

    ``*`` stays a wildcard; everything else is escaped like key components.

    Examples:
        >>> path_glob_to_key_pattern("/api/donations*")
        'cache:*:GET:_2Fapi_2Fdonations*'
    """

    escaped = "*".join(escape_component(segment) for segment in path_glob.split("*"))
    return f"{prefix}:*:GET:{escaped}"


def identity_key_pattern(identity: str, prefix: str = "cache") -> str:
    """Key glob matching every cached entry of one identity."""

    return f"{prefix}:{escape_component(identity)}:*"
