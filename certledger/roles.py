"""
certledger Role-Based Access Control

Two roles gate every mutation:

    ADMIN   approves categories, grants and revokes roles, extends deadlines
    ISSUER  issues, redeems, sets external refs, extends deadlines

AccessControl.require() is the capability check injected into the
category registry and the attestation store. It is consulted before any
state is touched, so a denied call never mutates anything.
"""

from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set

from .errors import Unauthorized


class Role(str, Enum):
    ADMIN = "ADMIN"
    ISSUER = "ISSUER"


def parse_role(value) -> Role:
    """Accept a Role or its name (case-insensitive)."""
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).upper())
    except ValueError:
        raise ValueError(f"Unknown role: {value}") from None


def _check_identity(identity) -> str:
    if not isinstance(identity, str) or not identity:
        raise ValueError("identity must be a non-empty string")
    return identity


class AccessControl:
    """
    Role membership table.

    The only state is Role -> set of identities. Grant/revoke callbacks
    let the ledger turn membership changes into audit events.
    """

    def __init__(self, on_change: Optional[Callable[[str, Role, str, str], None]] = None):
        self._members: Dict[Role, Set[str]] = {role: set() for role in Role}
        self._on_change = on_change

    def require(self, identity: str, *roles: Role) -> None:
        """
        Fail with Unauthorized unless identity holds at least one of roles.
        """
        for role in roles:
            if identity in self._members[role]:
                return
        raise Unauthorized(identity, "|".join(r.value for r in roles))

    def has_role(self, caller: str, role, identity: str) -> bool:
        """Membership check; administrators may query anyone, others only themselves."""
        if caller != identity:
            self.require(caller, Role.ADMIN)
        role = parse_role(role)
        return _check_identity(identity) in self._members[role]

    def grant_role(self, caller: str, role, identity: str) -> bool:
        """
        Grant role to identity. Administrator only.

        Returns:
            True if membership changed, False if identity already held the role
        """
        self.require(caller, Role.ADMIN)
        role = parse_role(role)
        identity = _check_identity(identity)
        if identity in self._members[role]:
            return False
        self._members[role].add(identity)
        if self._on_change:
            self._on_change("granted", role, identity, caller)
        return True

    def revoke_role(self, caller: str, role, identity: str) -> bool:
        """Revoke role from identity. Administrator only."""
        self.require(caller, Role.ADMIN)
        role = parse_role(role)
        identity = _check_identity(identity)
        if identity not in self._members[role]:
            return False
        self._members[role].discard(identity)
        if self._on_change:
            self._on_change("revoked", role, identity, caller)
        return True

    def renounce_role(self, caller: str, role) -> bool:
        """Drop one of the caller's own roles."""
        role = parse_role(role)
        if caller not in self._members[role]:
            return False
        self._members[role].discard(caller)
        if self._on_change:
            self._on_change("revoked", role, caller, caller)
        return True

    def bootstrap(self, role: Role, identities: Iterable[str]) -> None:
        """Seed membership without a caller (construction and restore only)."""
        for identity in identities:
            if identity:
                self._members[role].add(identity)

    def members(self, role) -> List[str]:
        return sorted(self._members[parse_role(role)])

    def to_dict(self) -> Dict[str, List[str]]:
        return {role.value: sorted(ids) for role, ids in self._members.items()}
