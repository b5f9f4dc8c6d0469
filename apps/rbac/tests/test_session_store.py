"""
Tests for the session store and the organization switch protocol.

Runs against an in-memory SessionBackend so every failure mode of the
remote side can be injected.
"""
import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone as dt_timezone
from unittest import mock

import pytest

from apps.core.exceptions import (
    AuthenticationError, BackendUnavailable, InvalidCredentials, NotConfigured,
    NotFound, OrganizationUnavailable, ValidationError,
)
from apps.core.local_state import CURRENT_ORGANIZATION_KEY, LocalStateStore
from apps.rbac.backends import SessionBackend
from apps.rbac.capabilities import MembershipStatus, Role
from apps.rbac.membership import activate, load_memberships, select_target
from apps.rbac.records import AuthIdentity, Identity, MembershipRecord, OrganizationRecord
from apps.rbac.session import SessionMode, SessionStore, build_session_store


BASE_TIME = datetime(2024, 1, 1, tzinfo=dt_timezone.utc)


class InMemoryBackend(SessionBackend):
    """SessionBackend over plain dicts with switchable failures."""

    def __init__(self, local_state=None):
        super().__init__(local_state)
        self.passwords = {}
        self.profiles = {}
        self.organizations = {}
        self.memberships = {}
        self.session = None
        self.unavailable = False
        self.revoke_fails = False
        self.revoked = 0

    def add_user(self, user_id, email, password='pw'):
        self.passwords[email] = (user_id, password)
        self.profiles[user_id] = Identity(id=user_id, email=email, full_name=email.split('@')[0])

    def add_organization(self, organization_id, name=None):
        self.organizations[organization_id] = OrganizationRecord(id=organization_id, name=name or organization_id)

    def add_membership(self, user_id, organization_id, role, status=MembershipStatus.ACTIVE, offset=0):
        self.memberships[(user_id, organization_id)] = MembershipRecord(
            user_id=user_id,
            organization_id=organization_id,
            role=Role(role),
            status=MembershipStatus(status),
            joined_at=BASE_TIME + timedelta(days=offset),
            organization_name=self.organizations[organization_id].name,
        )

    def _check(self):
        if self.unavailable:
            raise BackendUnavailable("Backend unavailable")

    async def authenticate(self, email, password):
        self._check()
        user_id, expected = self.passwords.get(email, (None, None))
        if user_id is None or expected != password:
            raise InvalidCredentials("Invalid email or password")
        self.session = AuthIdentity(id=user_id, email=email)
        return self.session

    async def current_session(self):
        self._check()
        return self.session

    async def revoke_session(self):
        if self.revoke_fails:
            raise BackendUnavailable("Revoke failed")
        self.revoked += 1
        self.session = None

    async def fetch_profile(self, user_id):
        self._check()
        return self.profiles.get(user_id)

    async def fetch_memberships(self, user_id):
        self._check()
        return [record for (uid, _), record in self.memberships.items() if uid == user_id]

    async def fetch_organization(self, organization_id):
        self._check()
        if organization_id not in self.organizations:
            raise NotFound("Organization not found")
        return self.organizations[organization_id]

    async def fetch_membership(self, user_id, organization_id):
        self._check()
        if (user_id, organization_id) not in self.memberships:
            raise NotFound("Membership not found")
        return self.memberships[(user_id, organization_id)]

    async def register(self, email, password, full_name=''):
        user_id = f"user-{len(self.profiles) + 1}"
        self.add_user(user_id, email, password)
        self.session = AuthIdentity(id=user_id, email=email)
        return self.session

    async def create_organization(self, user_id, name):
        organization_id = f"org-{len(self.organizations) + 1}"
        self.add_organization(organization_id, name)
        self.add_membership(user_id, organization_id, Role.ADMIN, offset=len(self.organizations))
        return self.organizations[organization_id]

    async def update_profile(self, user_id, full_name=None, email=None):
        self._check()
        profile = self.profiles[user_id]
        if email is not None and email != profile.email:
            if email in self.passwords:
                raise ValidationError("Email already registered")
            self.passwords[email] = self.passwords.pop(profile.email)
        profile = replace(
            profile,
            full_name=profile.full_name if full_name is None else full_name,
            email=profile.email if email is None else email,
        )
        self.profiles[user_id] = profile
        return profile

    async def change_password(self, user_id, old_password, new_password):
        self._check()
        email = self.profiles[user_id].email
        if self.passwords[email][1] != old_password:
            raise InvalidCredentials("Current password is incorrect")
        self.passwords[email] = (user_id, new_password)


@pytest.fixture
def backend(local_state):
    """Alice: admin of org-a (joined first), agent of org-b, pending in org-c."""
    backend = InMemoryBackend(local_state)
    backend.add_user('alice', 'alice@example.com')
    backend.add_organization('org-a', 'Acme')
    backend.add_organization('org-b', 'Beta')
    backend.add_organization('org-c', 'Gamma')
    backend.add_membership('alice', 'org-a', Role.ADMIN, offset=0)
    backend.add_membership('alice', 'org-b', Role.AGENT, offset=1)
    backend.add_membership('alice', 'org-c', Role.MANAGER, status=MembershipStatus.PENDING, offset=2)
    return backend


@pytest.fixture
def store(backend, local_state):
    return SessionStore(backend, local_state)


class TestMembershipProtocol:
    """Test loading memberships and choosing an organization."""

    @pytest.mark.asyncio
    async def test_load_memberships_keeps_active_oldest_first(self, backend):
        memberships = await load_memberships(backend, 'alice')
        assert [m.organization_id for m in memberships] == ['org-a', 'org-b']

    def test_select_target_prefers_persisted_choice(self):
        memberships = (
            MembershipRecord('u', 'org-a', Role.ADMIN, MembershipStatus.ACTIVE, BASE_TIME),
            MembershipRecord('u', 'org-b', Role.AGENT, MembershipStatus.ACTIVE, BASE_TIME),
        )
        assert select_target(memberships, 'org-b') == 'org-b'
        assert select_target(memberships, 'org-x') == 'org-a'
        assert select_target(memberships, None) == 'org-a'
        assert select_target((), 'org-b') is None

    @pytest.mark.asyncio
    async def test_activate_derives_capabilities(self, backend):
        activation = await activate(backend, 'alice', 'org-b')
        assert activation.organization.name == 'Beta'
        assert activation.capabilities.role == Role.AGENT

    @pytest.mark.asyncio
    async def test_activate_missing_organization(self, backend):
        with pytest.raises(OrganizationUnavailable):
            await activate(backend, 'alice', 'org-missing')

    @pytest.mark.asyncio
    async def test_activate_pending_membership(self, backend):
        with pytest.raises(OrganizationUnavailable):
            await activate(backend, 'alice', 'org-c')

    @pytest.mark.asyncio
    async def test_activate_propagates_backend_failure(self, backend):
        backend.unavailable = True
        with pytest.raises(BackendUnavailable):
            await activate(backend, 'alice', 'org-a')


class TestSignIn:
    """Test sign-in and the state it produces."""

    @pytest.mark.asyncio
    async def test_sign_in_activates_oldest_membership(self, store, local_state):
        identity = await store.sign_in('alice@example.com', 'pw')

        assert identity.id == 'alice'
        assert store.active_organization_id == 'org-a'
        assert store.capabilities.can_manage_users
        assert store.membership.organization_id == store.organization.id
        assert local_state.get(CURRENT_ORGANIZATION_KEY) == 'org-a'
        assert len(store.memberships) == 2

    @pytest.mark.asyncio
    async def test_sign_in_restores_persisted_organization(self, store, local_state):
        local_state.set(CURRENT_ORGANIZATION_KEY, 'org-b')

        await store.sign_in('alice@example.com', 'pw')

        assert store.active_organization_id == 'org-b'
        assert store.capabilities.is_agent

    @pytest.mark.asyncio
    async def test_wrong_password_leaves_state_unchanged(self, store):
        with pytest.raises(InvalidCredentials):
            await store.sign_in('alice@example.com', 'wrong')

        assert store.identity is None
        assert store.organization is None

    @pytest.mark.asyncio
    async def test_backend_unavailable_is_raised(self, store, backend):
        backend.unavailable = True
        with pytest.raises(BackendUnavailable):
            await store.sign_in('alice@example.com', 'pw')
        assert store.identity is None

    @pytest.mark.asyncio
    async def test_without_backend_sign_in_is_not_configured(self, local_state):
        store = SessionStore(None, local_state)
        with pytest.raises(NotConfigured):
            await store.sign_in('alice@example.com', 'pw')

    @pytest.mark.asyncio
    async def test_identity_without_memberships_has_no_organization(self, store, backend):
        backend.add_user('bob', 'bob@example.com')

        identity = await store.sign_in('bob@example.com', 'pw')

        assert identity.id == 'bob'
        assert store.organization is None
        assert store.capabilities is None
        with pytest.raises(OrganizationUnavailable):
            store.actor()

    @pytest.mark.asyncio
    async def test_failed_activation_keeps_saved_organization(self, store, backend, local_state):
        local_state.set(CURRENT_ORGANIZATION_KEY, 'org-b')
        saved_org = backend.organizations.pop('org-b')

        await store.sign_in('alice@example.com', 'pw')

        assert store.identity.id == 'alice'
        assert store.organization is None
        assert local_state.get(CURRENT_ORGANIZATION_KEY) == 'org-b'

        backend.organizations['org-b'] = saved_org
        store.dispose()
        restarted = SessionStore(backend, local_state)
        await restarted.init()
        assert restarted.active_organization_id == 'org-b'

    @pytest.mark.asyncio
    async def test_missing_profile_forces_sign_out(self, store, backend, local_state):
        backend.passwords['ghost@example.com'] = ('ghost', 'pw')

        with mock.patch('apps.rbac.session.SecurityLogger.log_corrupted_session') as log_corrupted:
            identity = await store.sign_in('ghost@example.com', 'pw')

        log_corrupted.assert_called_once_with('ghost')
        assert identity is None
        assert store.identity is None
        assert backend.session is None
        assert local_state.get(CURRENT_ORGANIZATION_KEY) is None

    @pytest.mark.asyncio
    async def test_actor_requires_sign_in(self, store):
        with pytest.raises(AuthenticationError):
            store.actor()


class TestSignOut:
    """Test sign-out clears everything, always."""

    @pytest.mark.asyncio
    async def test_sign_out_clears_memory_and_local_state(self, store, local_state):
        await store.sign_in('alice@example.com', 'pw')

        await store.sign_out()

        assert store.identity is None
        assert store.memberships == ()
        assert store.organization is None
        assert store.capabilities is None
        assert local_state.get(CURRENT_ORGANIZATION_KEY) is None

    @pytest.mark.asyncio
    async def test_sign_out_is_idempotent(self, store):
        await store.sign_in('alice@example.com', 'pw')
        await store.sign_out()
        await store.sign_out()

        assert store.identity is None

    @pytest.mark.asyncio
    async def test_revoke_failure_still_clears_state(self, store, backend, local_state):
        await store.sign_in('alice@example.com', 'pw')
        backend.revoke_fails = True

        with mock.patch('apps.rbac.session.SecurityLogger.log_sign_out_revoke_failed') as log_failed:
            await store.sign_out()

        log_failed.assert_called_once()
        assert store.identity is None
        assert local_state.get(CURRENT_ORGANIZATION_KEY) is None


class TestBootstrap:
    """Test restoring a session at process start."""

    @pytest.mark.asyncio
    async def test_restores_identity_and_organization(self, backend, local_state):
        first = SessionStore(backend, local_state)
        await first.sign_in('alice@example.com', 'pw')
        await first.switch_organization('org-b')
        first.dispose()

        second = SessionStore(backend, local_state)
        await second.init()

        assert second.identity.id == 'alice'
        assert second.active_organization_id == 'org-b'
        assert second.capabilities.is_agent
        assert second.initializing is False
        assert second.mode == SessionMode.READY

    @pytest.mark.asyncio
    async def test_no_session_leaves_store_empty(self, store):
        await store.bootstrap()

        assert store.identity is None
        assert store.initializing is False

    @pytest.mark.asyncio
    async def test_unavailable_backend_requires_setup(self, store, backend):
        backend.session = AuthIdentity(id='alice', email='alice@example.com')
        backend.unavailable = True

        await store.bootstrap()

        assert store.mode == SessionMode.SETUP_REQUIRED
        assert store.initializing is False
        assert store.identity is None

    @pytest.mark.asyncio
    async def test_without_backend_requires_setup(self, local_state):
        store = SessionStore(None, local_state)
        await store.bootstrap()

        assert store.mode == SessionMode.SETUP_REQUIRED
        assert store.initializing is False

    @pytest.mark.asyncio
    async def test_unexpected_error_never_escapes(self, store, backend):
        backend.session = AuthIdentity(id='alice', email='alice@example.com')
        with mock.patch.object(backend, 'fetch_memberships', side_effect=RuntimeError("boom")):
            await store.bootstrap()

        assert store.initializing is False
        assert store.identity is None

    @pytest.mark.asyncio
    async def test_init_runs_once(self, store):
        with mock.patch.object(store, 'bootstrap', wraps=store.bootstrap) as bootstrap:
            await store.init()
            await store.init()
        assert bootstrap.call_count == 1


class TestSwitchOrganization:
    """Test switching the active organization."""

    @pytest.mark.asyncio
    async def test_switch_flips_capabilities(self, store, local_state):
        await store.sign_in('alice@example.com', 'pw')
        assert store.capabilities.can_approve_quotes

        await store.switch_organization('org-b')

        assert store.active_organization_id == 'org-b'
        assert not store.capabilities.can_approve_quotes
        assert store.actor().organization_id == 'org-b'
        assert local_state.get(CURRENT_ORGANIZATION_KEY) == 'org-b'

    @pytest.mark.asyncio
    async def test_failed_switch_keeps_previous_selection(self, store, local_state):
        await store.sign_in('alice@example.com', 'pw')

        with pytest.raises(OrganizationUnavailable):
            await store.switch_organization('org-c')

        assert store.active_organization_id == 'org-a'
        assert store.capabilities.is_admin
        assert local_state.get(CURRENT_ORGANIZATION_KEY) == 'org-a'

    @pytest.mark.asyncio
    async def test_concurrent_switches_leave_one_consistent_organization(self, store):
        await store.sign_in('alice@example.com', 'pw')

        await asyncio.gather(
            store.switch_organization('org-a'),
            store.switch_organization('org-b'),
        )

        assert store.organization.id == store.membership.organization_id
        assert store.capabilities.role == store.membership.role

    @pytest.mark.asyncio
    async def test_switch_requires_sign_in(self, store):
        with pytest.raises(AuthenticationError):
            await store.switch_organization('org-a')


class TestRefreshAndCreate:

    @pytest.mark.asyncio
    async def test_refresh_keeps_current_organization(self, store, backend):
        await store.sign_in('alice@example.com', 'pw')
        await store.switch_organization('org-b')
        backend.add_organization('org-d', 'Delta')
        backend.add_membership('alice', 'org-d', Role.MANAGER, offset=5)

        await store.refresh_memberships()

        assert store.active_organization_id == 'org-b'
        assert len(store.memberships) == 3

    @pytest.mark.asyncio
    async def test_refresh_falls_back_when_membership_is_revoked(self, store, backend):
        await store.sign_in('alice@example.com', 'pw')
        await store.switch_organization('org-b')
        del backend.memberships[('alice', 'org-b')]

        await store.refresh_memberships()

        assert store.active_organization_id == 'org-a'

    @pytest.mark.asyncio
    async def test_create_organization_switches_to_it(self, store):
        await store.sign_in('alice@example.com', 'pw')

        organization = await store.create_organization('Omega')

        assert store.active_organization_id == organization.id
        assert store.capabilities.is_admin

    @pytest.mark.asyncio
    async def test_sign_up_creates_first_organization(self, store):
        identity = await store.sign_up('new@example.com', 'pw', 'New User', 'Newco')

        assert identity.email == 'new@example.com'
        assert store.organization.name == 'Newco'
        assert store.capabilities.is_admin


class TestProfile:
    """Test profile and password edits of the signed-in identity."""

    @pytest.mark.asyncio
    async def test_update_profile_refreshes_identity(self, store, backend):
        await store.sign_in('alice@example.com', 'pw')

        identity = await store.update_profile(full_name='Alice Liddell', email='alice@wonder.example')

        assert identity.full_name == 'Alice Liddell'
        assert store.identity.email == 'alice@wonder.example'
        assert store.active_organization_id == 'org-a'
        await store.sign_out()
        await store.sign_in('alice@wonder.example', 'pw')
        assert store.identity.id == 'alice'

    @pytest.mark.asyncio
    async def test_taken_email_leaves_identity_unchanged(self, store, backend):
        backend.add_user('bob', 'bob@example.com')
        await store.sign_in('alice@example.com', 'pw')

        with pytest.raises(ValidationError):
            await store.update_profile(email='bob@example.com')

        assert store.identity.email == 'alice@example.com'

    @pytest.mark.asyncio
    async def test_change_password(self, store):
        await store.sign_in('alice@example.com', 'pw')

        with pytest.raises(InvalidCredentials):
            await store.change_password('wrong', 'new-secret-123')
        await store.change_password('pw', 'new-secret-123')
        await store.sign_out()

        with pytest.raises(InvalidCredentials):
            await store.sign_in('alice@example.com', 'pw')
        await store.sign_in('alice@example.com', 'new-secret-123')

    @pytest.mark.asyncio
    async def test_profile_edits_require_sign_in(self, store):
        with pytest.raises(AuthenticationError):
            await store.update_profile(full_name='Nobody')
        with pytest.raises(AuthenticationError):
            await store.change_password('pw', 'new-secret-123')


class TestBuildSessionStore:

    def test_empty_setting_means_setup_required(self, settings, local_state):
        settings.QUOTEDESK_SESSION_BACKEND = ''
        store = build_session_store(local_state)
        assert store.backend is None
        assert store.mode == SessionMode.SETUP_REQUIRED

    def test_backend_loaded_from_setting(self, settings, local_state):
        settings.QUOTEDESK_SESSION_BACKEND = f"{InMemoryBackend.__module__}.InMemoryBackend"
        store = build_session_store(local_state)
        assert isinstance(store.backend, InMemoryBackend)
        assert store.backend.local_state is local_state

    def test_default_local_state(self, settings):
        settings.QUOTEDESK_SESSION_BACKEND = ''
        assert isinstance(build_session_store().local_state, LocalStateStore)
