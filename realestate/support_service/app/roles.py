"""Caller roles and the mapping from raw auth claims."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Role(str, Enum):
    SUPER_ADMIN = "super admin"
    AGENT = "agent"
    CLIENT = "client"
    ANONYMOUS = "unauthenticated"

    @property
    def is_staff(self) -> bool:
        return self in (Role.SUPER_ADMIN, Role.AGENT)


class SeenTrack(str, Enum):
    ADMIN = "admin"
    AGENT = "agent"
    CLIENT = "client"


_SUPER_ADMIN_CODES = {1000}
_AGENT_CODES = {2000, 3000, 7000}
_SUPER_ADMIN_NAMES = {"superadmin", "super admin", "super-admin", "super_admin"}
_AGENT_NAMES = {"agent"}


def role_from_claim(raw: Any) -> Role:
    """Map a role claim from the auth layer onto a Role.

    Numeric codes (1000 for platform administration, 2000/3000/7000 for
    agents) and role names are both accepted. Any other present value is a
    client; an absent claim is unauthenticated.
    """

    if raw is None or isinstance(raw, bool):
        return Role.ANONYMOUS
    if isinstance(raw, str):
        value = raw.strip()
        if not value:
            return Role.ANONYMOUS
        if value.isdigit():
            return role_from_claim(int(value))
        lowered = value.lower()
        if lowered in _SUPER_ADMIN_NAMES:
            return Role.SUPER_ADMIN
        if lowered in _AGENT_NAMES:
            return Role.AGENT
        return Role.CLIENT
    if isinstance(raw, int):
        if raw in _SUPER_ADMIN_CODES:
            return Role.SUPER_ADMIN
        if raw in _AGENT_CODES:
            return Role.AGENT
        return Role.CLIENT
    return Role.CLIENT


def track_for_role(role: Role) -> SeenTrack | None:
    """Return the seen track a role reads with, if any."""

    if role is Role.SUPER_ADMIN:
        return SeenTrack.ADMIN
    if role is Role.AGENT:
        return SeenTrack.AGENT
    if role is Role.CLIENT:
        return SeenTrack.CLIENT
    return None


@dataclass(frozen=True, slots=True)
class Caller:
    """Identity and role handed over by the auth layer."""

    identity: str | None
    role: Role

    @classmethod
    def anonymous(cls) -> Caller:
        return cls(identity=None, role=Role.ANONYMOUS)

    @classmethod
    def from_claims(cls, identity: str | None, raw_role: Any) -> Caller:
        cleaned = identity.strip() if identity else None
        role = role_from_claim(raw_role)
        if role is not Role.ANONYMOUS and not cleaned:
            role = Role.ANONYMOUS
        return cls(identity=cleaned or None, role=role)

    @property
    def seen_track(self) -> SeenTrack | None:
        return track_for_role(self.role)
