"""Role-based permission policy for chat triggers."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from core.contracts import Role

# Each tier also covers every tier above it.
_AT_LEAST = {
    Role.BROADCASTER: frozenset({Role.BROADCASTER}),
    Role.MODERATOR: frozenset({Role.MODERATOR, Role.BROADCASTER}),
    Role.VIP: frozenset({Role.VIP, Role.MODERATOR, Role.BROADCASTER}),
    Role.SUBSCRIBER: frozenset(
        {Role.SUBSCRIBER, Role.VIP, Role.MODERATOR, Role.BROADCASTER}
    ),
}


@dataclass(frozen=True)
class Policy:
    everyone: bool = True
    broadcaster: bool = False
    moderator: bool = False
    vip: bool = False
    subscriber: bool = False

    def allows(self, role: Role) -> bool:
        return bool(getattr(self, role.value, False))


def evaluate(policy: Policy, requester_roles: Iterable[Role] | None) -> bool:
    if policy.everyone:
        return True
    held = frozenset(requester_roles or ())
    for tier, covered in _AT_LEAST.items():
        if policy.allows(tier) and held & covered:
            return True
    return False


def roles_from_badges(badges: Mapping[str, str] | None) -> frozenset[Role]:
    """Map Twitch badge tags (name -> version) to roles.

    broadcaster/moderator/vip count only with version "1"; any subscriber
    badge version (tenure) counts.
    """
    if not badges:
        return frozenset()
    roles = set()
    for role in (Role.BROADCASTER, Role.MODERATOR, Role.VIP):
        if badges.get(role.value) == "1":
            roles.add(role)
    if "subscriber" in badges:
        roles.add(Role.SUBSCRIBER)
    return frozenset(roles)


__all__ = ["Policy", "evaluate", "roles_from_badges"]
