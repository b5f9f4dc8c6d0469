"""
Snapshots handed across the session backend boundary.

Backends return these immutable records instead of ORM instances so the
session store never holds live database objects.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from apps.rbac.capabilities import CapabilitySet, MembershipStatus, Role


@dataclass(frozen=True)
class AuthIdentity:
    """Identity as known to the authentication layer."""

    id: str
    email: str


@dataclass(frozen=True)
class Identity:
    """Application-level profile of an authenticated identity."""

    id: str
    email: str
    full_name: str = ''
    is_active: bool = True
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email


@dataclass(frozen=True)
class OrganizationRecord:
    id: str
    name: str
    settings: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


@dataclass(frozen=True)
class MembershipRecord:
    """One (identity, organization, role, status) tuple."""

    user_id: str
    organization_id: str
    role: Role
    status: MembershipStatus
    joined_at: datetime
    organization_name: str = ''

    @property
    def is_active(self) -> bool:
        return self.status == MembershipStatus.ACTIVE


@dataclass(frozen=True)
class ActorContext:
    """
    Who is acting, and within which organization.

    Built by SessionStore.actor() and passed to every quote, catalog and
    organization service.
    """

    user_id: str
    organization_id: str
    capabilities: CapabilitySet

    @property
    def role(self) -> Role:
        return self.capabilities.role
