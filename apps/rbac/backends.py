"""
Authentication and session backends for QuoteDesk.

- EmailAuthBackend: Django authentication backend, email + password.
- SessionBackend: async interface the session store talks to.
- DatabaseSessionBackend: SessionBackend over the Django ORM, with JWT
  session tokens kept in the local state store.
"""
import functools
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from asgiref.sync import sync_to_async
from django.contrib.auth.backends import BaseBackend
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError

from apps.core.exceptions import BackendUnavailable, NotFound
from apps.core.local_state import LocalStateStore, SESSION_TOKEN_KEY
from apps.organizations.models import Organization
from apps.organizations.services import OrganizationService, organization_settings
from apps.rbac.capabilities import MembershipStatus, Role
from apps.rbac.models import Membership
from apps.rbac.records import AuthIdentity, Identity, MembershipRecord, OrganizationRecord
from apps.rbac.services import AuthService

logger = logging.getLogger(__name__)

User = get_user_model()


class EmailAuthBackend(BaseBackend):
    """
    Authenticate using email address instead of username.
    """

    def authenticate(self, request, username=None, password=None, **kwargs):
        """
        Authenticate user by email and password.

        Returns:
            User instance if authentication succeeds, None otherwise
        """
        email = username or kwargs.get('email')

        if not email or not password:
            return None

        try:
            user = User.objects.get(email=email)
        except User.DoesNotExist:
            # Run the default password hasher once to reduce timing
            # difference between existing and non-existing users
            User().set_password(password)
            return None

        if user.check_password(password) and user.is_active:
            return user
        return None

    def get_user(self, user_id):
        try:
            return User.objects.get(pk=user_id)
        except (User.DoesNotExist, DjangoValidationError, ValueError):
            return None


class SessionBackend(ABC):
    """
    Remote collaborator of the session store.

    All operations are coroutines. Implementations raise
    InvalidCredentials, NotFound, ValidationError (profile changes) and
    BackendUnavailable; nothing else is expected to escape.
    """

    def __init__(self, local_state: Optional[LocalStateStore] = None):
        self.local_state = local_state or LocalStateStore()

    @abstractmethod
    async def authenticate(self, email: str, password: str) -> AuthIdentity:
        """Sign in and open a session, or raise InvalidCredentials."""

    @abstractmethod
    async def current_session(self) -> Optional[AuthIdentity]:
        """Identity of the persisted session, or None."""

    @abstractmethod
    async def revoke_session(self) -> None:
        """End the current session remotely. A no-op without a session."""

    @abstractmethod
    async def fetch_profile(self, user_id: str) -> Optional[Identity]:
        """Application profile for an identity, or None if missing."""

    @abstractmethod
    async def fetch_memberships(self, user_id: str) -> List[MembershipRecord]:
        """Every membership of the identity, in any status."""

    @abstractmethod
    async def fetch_organization(self, organization_id: str) -> OrganizationRecord:
        """Organization record, or raise NotFound."""

    @abstractmethod
    async def fetch_membership(self, user_id: str, organization_id: str) -> MembershipRecord:
        """Membership of the identity in the organization, or raise NotFound."""

    @abstractmethod
    async def register(self, email: str, password: str, full_name: str = '') -> AuthIdentity:
        """Create an identity and open a session for it."""

    @abstractmethod
    async def create_organization(self, user_id: str, name: str) -> OrganizationRecord:
        """Create an organization with the identity as its admin."""

    @abstractmethod
    async def update_profile(self, user_id: str, full_name: Optional[str] = None,
                             email: Optional[str] = None) -> Identity:
        """Change name and/or email; raise ValidationError on a taken email."""

    @abstractmethod
    async def change_password(self, user_id: str, old_password: str, new_password: str) -> None:
        """Replace the password; raise InvalidCredentials on a wrong current one."""


def _membership_record(membership) -> MembershipRecord:
    return MembershipRecord(
        user_id=str(membership.user_id),
        organization_id=str(membership.organization_id),
        role=Role.from_value(membership.role),
        status=MembershipStatus.from_value(membership.status),
        joined_at=membership.joined_at,
        organization_name=membership.organization.name,
    )


def _identity(user) -> Identity:
    return Identity(
        id=str(user.id),
        email=user.email,
        full_name=user.full_name,
        is_active=user.is_active,
        created_at=user.created_at,
        last_login_at=user.last_login_at,
    )


def _organization_record(organization) -> OrganizationRecord:
    return OrganizationRecord(
        id=str(organization.id),
        name=organization.name,
        settings=organization_settings(organization),
    )


def _database_call(func):
    """Run ORM work off the event loop, mapping database failures."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await sync_to_async(func)(*args, **kwargs)
        except DatabaseError as e:
            logger.error(
                f"Database error in session backend: {str(e)}",
                extra={'operation': func.__name__},
                exc_info=True
            )
            raise BackendUnavailable("Backend unavailable", details={'operation': func.__name__})
    return wrapper


class DatabaseSessionBackend(SessionBackend):
    """
    SessionBackend backed by the project database.

    The session is a JWT issued by AuthService and persisted under the
    ``sessionToken`` local state key; revocation records the token id in
    the Django cache until the token expires.
    """

    @_database_call
    def authenticate(self, email, password):
        result = AuthService.login(email, password)
        self.local_state.set(SESSION_TOKEN_KEY, result['token'])
        user = result['user']
        return AuthIdentity(id=str(user.id), email=user.email)

    @_database_call
    def current_session(self):
        token = self.local_state.get(SESSION_TOKEN_KEY)
        if not token:
            return None
        payload = AuthService.validate_jwt(token)
        if not payload or not payload.get('user_id'):
            self.local_state.delete(SESSION_TOKEN_KEY)
            return None
        return AuthIdentity(id=payload['user_id'], email=payload.get('email', ''))

    @_database_call
    def revoke_session(self):
        token = self.local_state.get(SESSION_TOKEN_KEY)
        if token:
            AuthService.revoke_jwt(token)
        self.local_state.delete(SESSION_TOKEN_KEY)

    @_database_call
    def fetch_profile(self, user_id):
        try:
            user = User.objects.filter(id=user_id, is_active=True).first()
        except (DjangoValidationError, ValueError):
            return None
        if user is None:
            return None
        return _identity(user)

    @_database_call
    def fetch_memberships(self, user_id):
        return [
            _membership_record(membership)
            for membership in Membership.objects.filter(user_id=user_id)
            .select_related('organization')
            .order_by('joined_at')
        ]

    @_database_call
    def fetch_organization(self, organization_id):
        try:
            return _organization_record(Organization.objects.get(id=organization_id))
        except (Organization.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFound("Organization not found", details={'organization_id': str(organization_id)})

    @_database_call
    def fetch_membership(self, user_id, organization_id):
        try:
            membership = Membership.objects.select_related('organization').get(
                user_id=user_id,
                organization_id=organization_id,
            )
        except (Membership.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFound(
                "Membership not found",
                details={'user_id': str(user_id), 'organization_id': str(organization_id)}
            )
        return _membership_record(membership)

    @_database_call
    def register(self, email, password, full_name=''):
        user = AuthService.register_user(email, password, full_name)
        self.local_state.set(SESSION_TOKEN_KEY, AuthService.generate_jwt(user))
        return AuthIdentity(id=str(user.id), email=user.email)

    @_database_call
    def create_organization(self, user_id, name):
        user = User.objects.get(id=user_id)
        return _organization_record(OrganizationService.create_organization(user, name))

    @_database_call
    def update_profile(self, user_id, full_name=None, email=None):
        return _identity(AuthService.update_profile(user_id, full_name=full_name, email=email))

    @_database_call
    def change_password(self, user_id, old_password, new_password):
        AuthService.change_password(user_id, old_password, new_password)
