"""
Role to capability table.

The three membership roles are a closed enumeration and the table below is
the only place role checks are spelled out. Every other component asks a
CapabilitySet (or the action authorizer) instead of comparing role strings.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.db import models

logger = logging.getLogger(__name__)


class Role(models.TextChoices):
    """Membership role, ordered by privilege."""
    ADMIN = 'admin', 'Administrator'
    MANAGER = 'manager', 'Manager'
    AGENT = 'agent', 'Sales Agent'

    @property
    def rank(self) -> int:
        return ROLE_RANKS[self]

    @classmethod
    def from_value(cls, raw) -> 'Role':
        """
        Parse a role read from storage or any other external source.

        Unknown values fail closed to the least-privileged role and are
        logged; this never raises.
        """
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, str):
            raw = raw.strip().lower()
        try:
            return cls(raw)
        except (ValueError, TypeError):
            logger.warning(
                "Unknown role value, falling back to agent",
                extra={'role_value': repr(raw)}
            )
            return cls.AGENT


ROLE_RANKS = {
    Role.ADMIN: 3,
    Role.MANAGER: 2,
    Role.AGENT: 1,
}


class MembershipStatus(models.TextChoices):
    """Membership status; only active memberships grant capabilities."""
    ACTIVE = 'active', 'Active'
    PENDING = 'pending', 'Pending'
    INACTIVE = 'inactive', 'Inactive'

    @classmethod
    def from_value(cls, raw) -> 'MembershipStatus':
        try:
            return cls(raw)
        except (ValueError, TypeError):
            logger.warning(
                "Unknown membership status, treating as inactive",
                extra={'status_value': repr(raw)}
            )
            return cls.INACTIVE


@dataclass(frozen=True)
class CapabilitySet:
    """Read-only projection of a role into named booleans."""

    role: Role
    can_create_quotes: bool
    can_approve_quotes: bool
    can_send_quotes: bool
    can_manage_products: bool
    can_manage_clients: bool
    can_view_dashboard: bool
    can_manage_users: bool
    can_view_audit_logs: bool

    @property
    def is_agent(self) -> bool:
        return self.role == Role.AGENT

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


CAPABILITY_TABLE = {
    Role.ADMIN: CapabilitySet(
        role=Role.ADMIN,
        can_create_quotes=True,
        can_approve_quotes=True,
        can_send_quotes=True,
        can_manage_products=True,
        can_manage_clients=True,
        can_view_dashboard=True,
        can_manage_users=True,
        can_view_audit_logs=True,
    ),
    Role.MANAGER: CapabilitySet(
        role=Role.MANAGER,
        can_create_quotes=True,
        can_approve_quotes=True,
        can_send_quotes=True,
        can_manage_products=True,
        can_manage_clients=True,
        can_view_dashboard=True,
        can_manage_users=False,
        can_view_audit_logs=True,
    ),
    Role.AGENT: CapabilitySet(
        role=Role.AGENT,
        can_create_quotes=True,
        can_approve_quotes=False,
        can_send_quotes=False,
        can_manage_products=False,
        can_manage_clients=False,
        can_view_dashboard=True,
        can_manage_users=False,
        can_view_audit_logs=False,
    ),
}


def capabilities_for(role) -> CapabilitySet:
    """
    Return the capability set for a role.

    Total over its input: anything that is not a Role is parsed with
    Role.from_value, so unknown values get the agent set.
    """
    return CAPABILITY_TABLE[Role.from_value(role)]


def capabilities_for_membership(membership) -> Optional[CapabilitySet]:
    """Capabilities granted by a membership, or None unless it is active."""
    if membership is None:
        return None
    if MembershipStatus.from_value(membership.status) != MembershipStatus.ACTIVE:
        return None
    return capabilities_for(membership.role)
