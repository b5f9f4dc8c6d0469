"""
Organization switch protocol.

1. load_memberships: active memberships of an identity, oldest first.
2. select_target: the persisted organization if still held, else the first.
3. activate: fetch the organization and the membership concurrently, join
   both, derive capabilities.

Nothing here mutates the session store; it applies the returned
Activation in a single assignment.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from apps.core.exceptions import NotFound, OrganizationUnavailable
from apps.rbac.capabilities import CapabilitySet, MembershipStatus, capabilities_for_membership
from apps.rbac.records import MembershipRecord, OrganizationRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Activation:
    """An organization made active, with the membership and capabilities it grants."""

    organization: OrganizationRecord
    membership: MembershipRecord
    capabilities: CapabilitySet


async def load_memberships(backend, user_id: str) -> Tuple[MembershipRecord, ...]:
    records = await backend.fetch_memberships(user_id)
    active = [record for record in records if record.status == MembershipStatus.ACTIVE]
    return tuple(sorted(active, key=lambda record: record.joined_at))


def select_target(memberships: Sequence[MembershipRecord],
                  persisted_organization_id: Optional[str]) -> Optional[str]:
    """
    Pick the organization to activate.

    Returns None when there are no memberships; the caller then has to
    offer organization creation or selection.
    """
    if not memberships:
        return None
    if persisted_organization_id:
        for membership in memberships:
            if membership.organization_id == str(persisted_organization_id):
                return membership.organization_id
    return memberships[0].organization_id


async def activate(backend, user_id: str, organization_id: str) -> Activation:
    """
    Load an organization and the identity's membership in it.

    Raises:
        OrganizationUnavailable: either record is missing or the
            membership is not active
    """
    organization_id = str(organization_id)
    try:
        organization, membership = await asyncio.gather(
            backend.fetch_organization(organization_id),
            backend.fetch_membership(user_id, organization_id),
        )
    except NotFound as e:
        logger.warning(
            "Organization switch failed",
            extra={'user_id': str(user_id), 'organization_id': organization_id, 'reason': e.message}
        )
        raise OrganizationUnavailable(
            "Organization is not available",
            details={'organization_id': organization_id}
        )

    capabilities = capabilities_for_membership(membership)
    if capabilities is None:
        logger.warning(
            "Organization switch refused for non-active membership",
            extra={'user_id': str(user_id), 'organization_id': organization_id,
                   'status': str(membership.status)}
        )
        raise OrganizationUnavailable(
            "Membership is not active",
            details={'organization_id': organization_id, 'status': str(membership.status)}
        )

    return Activation(
        organization=organization,
        membership=membership,
        capabilities=capabilities,
    )
