from __future__ import annotations

from dataclasses import dataclass, field

from .errors import MalformedIdentity

IDENTITY_LABEL = "app.kubernetes.io/name"
IDENTITY_VALUE = "designate"
OWNER_KIND = "StatefulSet"
DEFAULT_ROLES: tuple[str, ...] = ("designate-backendbind9", "designate-mdns", "designate-unbound")
TERMINAL_PHASES = frozenset({"Succeeded", "Failed"})


@dataclass(frozen=True)
class OwnerReference:
    kind: str
    name: str


@dataclass(frozen=True)
class Member:
    """Snapshot of one fleet member as delivered by the watch."""

    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: tuple[OwnerReference, ...] = ()
    phase: str = "Pending"
    deletion_timestamp: str | None = None
    version: str | None = None

    @property
    def deleting(self) -> bool:
        return self.deletion_timestamp is not None

    @property
    def terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES


def _is_ordinal(token: str) -> bool:
    # ASCII only: str.isdigit also accepts superscripts and other scripts' digits.
    return token.isascii() and token.isdigit()


def extract_ordinal(name: str) -> int:
    """Return the replica ordinal of ``{set-name}-{ordinal}``."""
    head, sep, tail = name.rpartition("-")
    if not sep:
        raise MalformedIdentity(f"Invalid member name format: {name}")
    if not _is_ordinal(tail):
        raise MalformedIdentity(f"Invalid ordinal in member name {name}: {tail!r}")
    return int(tail)


def role_suffix(role: str) -> str:
    """``designate-mdns`` -> ``mdns``; roles without the fleet prefix are returned as is."""
    prefix = f"{IDENTITY_VALUE}-"
    return role[len(prefix):] if role.startswith(prefix) else role


@dataclass(frozen=True)
class MemberClassifier:
    """Decides whether a member belongs to the DNS fleet, and to which role."""

    roles: tuple[str, ...] = DEFAULT_ROLES
    identity_label: str = IDENTITY_LABEL
    identity_value: str = IDENTITY_VALUE

    def is_managed(self, member: Member) -> bool:
        if member.labels.get(self.identity_label) == self.identity_value:
            return True

        for owner in member.owner_references:
            if owner.kind == OWNER_KIND and any(role in owner.name for role in self.roles):
                return True

        # StatefulSet members are named {set-name}-{ordinal}
        for role in self.roles:
            prefix = f"{role}-"
            if member.name.startswith(prefix) and _is_ordinal(member.name[len(prefix):]):
                return True

        return False

    def role_of(self, member: Member) -> str:
        """Role the member replicates; falls back to its set name for label-only members."""
        # Longest first so that a role never shadows a longer role it prefixes.
        roles = sorted(self.roles, key=len, reverse=True)
        for role in roles:
            if member.name.startswith(f"{role}-"):
                return role
        for owner in member.owner_references:
            if owner.kind == OWNER_KIND:
                for role in roles:
                    if role in owner.name:
                        return role
        return member.name.rpartition("-")[0] or member.name


default_classifier = MemberClassifier()


def is_managed_member(member: Member) -> bool:
    return default_classifier.is_managed(member)
