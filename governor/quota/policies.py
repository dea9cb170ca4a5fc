"""Quota policies and the route registry that selects them.

Policies are immutable values built once at startup. Role-dependent limits
are stored as a tier table and resolved per request, because the role is
only known after authentication has run.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from governor.core.errors import InvalidPolicyConfigurationError

DEFAULT_DENIAL_MESSAGE = "Too many requests, please try again later"


class QuotaAlgorithm(str, Enum):
    FIXED_WINDOW = "fixed_window"
    POINTS = "points"


class KeyStrategy(str, Enum):
    """How the limited identity is derived.

    IP always limits by client address; IDENTITY limits by authenticated
    principal and falls back to the address for anonymous callers.
    """

    IP = "ip"
    IDENTITY = "identity"


@dataclass(frozen=True)
class RoleLimits:
    """Limit per role tier.

    Attributes:
        tiers: (role, limit) pairs.
        anonymous: Limit for unauthenticated callers.
        default: Limit for authenticated callers whose role has no tier.
    """

    tiers: tuple[tuple[str, int], ...]
    anonymous: int
    default: int

    @classmethod
    def from_mapping(cls, tiers: Mapping[str, int], *, anonymous: int, default: int) -> "RoleLimits":
        return cls(tiers=tuple(sorted(tiers.items())), anonymous=anonymous, default=default)

    @property
    def roles(self) -> frozenset[str]:
        return frozenset(role for role, _ in self.tiers)

    def limit_for(self, role: str | None, *, authenticated: bool) -> int:
        if not authenticated:
            return self.anonymous
        return dict(self.tiers).get(role or "", self.default)

    def all_limits(self) -> tuple[int, ...]:
        return (*(limit for _, limit in self.tiers), self.anonymous, self.default)


@dataclass(frozen=True)
class QuotaPolicy:
    """A named quota.

    For ``FIXED_WINDOW`` the limit counts requests per window; for
    ``POINTS`` it is the point budget per duration (``window_seconds``).
    """

    name: str
    limit: int | RoleLimits
    window_seconds: int
    algorithm: QuotaAlgorithm = QuotaAlgorithm.FIXED_WINDOW
    key_strategy: KeyStrategy = KeyStrategy.IP
    message: str = DEFAULT_DENIAL_MESSAGE

    def limit_for(self, role: str | None = None, *, authenticated: bool = False) -> int:
        if isinstance(self.limit, RoleLimits):
            return self.limit.limit_for(role, authenticated=authenticated)
        return self.limit


@dataclass(frozen=True)
class QuotaBinding:
    """Binds a policy to a path prefix, optionally restricted to one method."""

    path_prefix: str
    policy: str
    method: str | None = None

    def matches(self, method: str, path: str) -> bool:
        if self.method is not None and self.method != method:
            return False
        prefix = self.path_prefix.rstrip("/")
        return path == prefix or path.startswith(prefix + "/")


def _config_error(code: str, message: str, **context: object) -> InvalidPolicyConfigurationError:
    return InvalidPolicyConfigurationError(code=code, message=message, details={"context": dict(context)})


@dataclass(frozen=True)
class QuotaPolicyRegistry:
    """Immutable table of policies, route bindings and exemptions.

    Raises:
        InvalidPolicyConfigurationError: On construction, when a policy has a
            non-positive limit or window, references an undefined role tier,
            or a binding names an unknown policy.
    """

    policies: tuple[QuotaPolicy, ...]
    bindings: tuple[QuotaBinding, ...] = ()
    general: str | None = None
    exempt_paths: frozenset[str] = frozenset()
    exempt_prefixes: tuple[str, ...] = ()
    known_roles: frozenset[str] | None = None
    _by_name: dict[str, QuotaPolicy] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_name: dict[str, QuotaPolicy] = {}
        for policy in self.policies:
            if policy.name in by_name:
                raise _config_error("duplicate_policy", f"Quota policy '{policy.name}' is defined twice", policy=policy.name)
            self._validate_policy(policy)
            by_name[policy.name] = policy

        for binding in self.bindings:
            if binding.policy not in by_name:
                raise _config_error(
                    "unknown_policy",
                    f"Route '{binding.path_prefix}' references undefined quota policy '{binding.policy}'",
                    policy=binding.policy,
                    path_prefix=binding.path_prefix,
                )
        if self.general is not None and self.general not in by_name:
            raise _config_error("unknown_policy", f"General quota policy '{self.general}' is not defined", policy=self.general)

        object.__setattr__(self, "_by_name", by_name)

    def _validate_policy(self, policy: QuotaPolicy) -> None:
        if policy.window_seconds < 1:
            raise _config_error("invalid_window", f"Quota policy '{policy.name}' needs window_seconds >= 1", policy=policy.name)

        if isinstance(policy.limit, RoleLimits):
            limits = policy.limit.all_limits()
            if self.known_roles is not None:
                undefined = policy.limit.roles - self.known_roles
                if undefined:
                    raise _config_error(
                        "undefined_role_tier",
                        f"Quota policy '{policy.name}' references undefined role tiers: {sorted(undefined)}",
                        policy=policy.name,
                        roles=sorted(undefined),
                    )
        else:
            limits = (policy.limit,)

        if any(limit < 1 for limit in limits):
            raise _config_error("invalid_limit", f"Quota policy '{policy.name}' needs limits >= 1", policy=policy.name)

    def get(self, name: str) -> QuotaPolicy:
        try:
            return self._by_name[name]
        except KeyError:
            raise _config_error("unknown_policy", f"Quota policy '{name}' is not defined", policy=name) from None

    def is_exempt(self, path: str) -> bool:
        if path in self.exempt_paths:
            return True
        return any(path.startswith(prefix) for prefix in self.exempt_prefixes)

    def policies_for(self, method: str, path: str) -> list[QuotaPolicy]:
        """Policies that apply to a request: the general one first, then endpoint ones."""

        names: list[str] = [self.general] if self.general else []
        for binding in self.bindings:
            if binding.matches(method, path) and binding.policy not in names:
                names.append(binding.policy)
        return [self._by_name[name] for name in names]

    @classmethod
    def build(
        cls,
        policies: Iterable[QuotaPolicy],
        bindings: Iterable[QuotaBinding] = (),
        *,
        general: str | None = None,
        exempt_paths: Iterable[str] = (),
        exempt_prefixes: Iterable[str] = (),
        known_roles: Iterable[str] | None = None,
    ) -> "QuotaPolicyRegistry":
        return cls(
            policies=tuple(policies),
            bindings=tuple(bindings),
            general=general,
            exempt_paths=frozenset(exempt_paths),
            exempt_prefixes=tuple(exempt_prefixes),
            known_roles=frozenset(known_roles) if known_roles is not None else None,
        )
