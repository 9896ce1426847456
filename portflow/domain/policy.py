"""Role x operation authorization table."""

from __future__ import annotations

from portflow.domain.models import Role


_STAFF = frozenset({Role.ADMIN, Role.OPERATOR})
_BOOKERS = frozenset({Role.ADMIN, Role.OPERATOR, Role.CARRIER})
_EVERYONE = frozenset(Role.ALL)

POLICY: dict[str, frozenset[str]] = {
    "booking:read": _EVERYONE,
    "booking:create": _BOOKERS,
    "booking:confirm": _STAFF,
    "booking:reject": _STAFF,
    "booking:cancel": frozenset({Role.ADMIN, Role.CARRIER}),
    "booking:reassign": _STAFF,
    "booking:modify": _BOOKERS,
    "booking:override": _STAFF,
    "slots:read": _EVERYONE,
    "exceptions:read": _STAFF,
    "dashboard:operator": _STAFF,
    "dashboard:carrier": _BOOKERS,
    "qr:generate": frozenset({Role.ADMIN, Role.CARRIER, Role.DRIVER}),
    "qr:scan": _STAFF,
    "logs:read": frozenset({Role.ADMIN}),
    "registry:read": _EVERYONE,
    "registry:write": frozenset({Role.ADMIN}),
    "fleet:write": frozenset({Role.ADMIN, Role.CARRIER}),
    "terminal:write": _STAFF,
}


def is_allowed(role: str, operation: str) -> bool:
    """Unknown operations are denied."""
    return role in POLICY.get(operation, frozenset())
