"""
Tests for the role to capability table.
"""
import pytest
from hypothesis import given, strategies as st

from apps.rbac.capabilities import (
    CAPABILITY_TABLE, MembershipStatus, Role, capabilities_for,
    capabilities_for_membership,
)
from apps.rbac.records import MembershipRecord


CAPABILITY_FIELDS = [
    'can_create_quotes', 'can_approve_quotes', 'can_send_quotes',
    'can_manage_products', 'can_manage_clients', 'can_view_dashboard',
    'can_manage_users', 'can_view_audit_logs',
]


def _membership(role='agent', status='active'):
    from django.utils import timezone
    return MembershipRecord(
        user_id='u-1',
        organization_id='o-1',
        role=role,
        status=status,
        joined_at=timezone.now(),
    )


class TestCapabilityTable:
    """Test the fixed role table."""

    def test_admin_has_every_capability(self):
        caps = capabilities_for(Role.ADMIN)
        assert all(getattr(caps, name) for name in CAPABILITY_FIELDS)

    def test_manager_cannot_manage_users(self):
        caps = capabilities_for(Role.MANAGER)
        assert caps.can_approve_quotes
        assert caps.can_send_quotes
        assert caps.can_view_audit_logs
        assert not caps.can_manage_users

    def test_agent_only_creates_and_views_dashboard(self):
        caps = capabilities_for(Role.AGENT)
        granted = {name for name in CAPABILITY_FIELDS if getattr(caps, name)}
        assert granted == {'can_create_quotes', 'can_view_dashboard'}
        assert caps.is_agent

    def test_accepts_raw_strings(self):
        assert capabilities_for('manager') == CAPABILITY_TABLE[Role.MANAGER]
        assert capabilities_for(' ADMIN ') == CAPABILITY_TABLE[Role.ADMIN]

    def test_unknown_role_gets_agent_set(self):
        assert capabilities_for('owner') == CAPABILITY_TABLE[Role.AGENT]
        assert capabilities_for(None) == CAPABILITY_TABLE[Role.AGENT]

    def test_role_ranks(self):
        assert Role.ADMIN.rank > Role.MANAGER.rank > Role.AGENT.rank

    @given(raw=st.one_of(st.text(max_size=20), st.none(), st.integers()))
    def test_capabilities_for_is_total(self, raw):
        """Any input maps to one of the three table entries without raising."""
        assert capabilities_for(raw) in CAPABILITY_TABLE.values()

    @given(role=st.sampled_from(list(Role)))
    def test_approvers_can_also_create(self, role):
        caps = capabilities_for(role)
        if caps.can_approve_quotes:
            assert caps.can_create_quotes
        if caps.can_manage_users:
            assert caps.role == Role.ADMIN


class TestMembershipCapabilities:

    def test_active_membership_grants_role_capabilities(self):
        assert capabilities_for_membership(_membership('manager')) == CAPABILITY_TABLE[Role.MANAGER]

    @pytest.mark.parametrize('status', ['pending', 'inactive', 'suspended'])
    def test_non_active_membership_grants_nothing(self, status):
        assert capabilities_for_membership(_membership('admin', status)) is None

    def test_no_membership_grants_nothing(self):
        assert capabilities_for_membership(None) is None

    def test_unknown_status_is_inactive(self):
        assert MembershipStatus.from_value('archived') == MembershipStatus.INACTIVE
