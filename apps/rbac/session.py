"""
Session and membership store.

SessionStore owns the signed-in identity, the identity's active
memberships and the single active organization. It is constructed once at
process start (build_session_store), initialised with init() and torn down
with dispose(); consumers receive it explicitly and read the current actor
through actor().

Failure handling:
- bootstrap() never raises and always clears ``initializing``.
- sign_in() raises InvalidCredentials, BackendUnavailable or NotConfigured
  with the state unchanged.
- An identity without a profile is a corrupted session and is signed out.
- sign_out() always clears local state, even when the remote revoke fails.
"""
import logging
from typing import Optional, Tuple

from django.conf import settings
from django.utils.module_loading import import_string

from apps.core.exceptions import (
    AuthenticationError, BackendUnavailable, NotConfigured,
    OrganizationUnavailable, QuoteDeskException,
)
from apps.core.local_state import CURRENT_ORGANIZATION_KEY, LocalStateStore
from apps.core.logging import SecurityLogger
from apps.rbac.backends import SessionBackend
from apps.rbac.capabilities import CapabilitySet
from apps.rbac.membership import Activation, activate, load_memberships, select_target
from apps.rbac.records import ActorContext, AuthIdentity, Identity, MembershipRecord, OrganizationRecord

logger = logging.getLogger(__name__)


class SessionMode:
    READY = 'ready'
    SETUP_REQUIRED = 'setup_required'


class SessionStore:
    """
    Explicitly owned session state.

    The active organization, its membership and the derived capabilities
    are held as one Activation, so at most one organization is ever
    active and the three can never disagree.
    """

    def __init__(self, backend: Optional[SessionBackend],
                 local_state: Optional[LocalStateStore] = None):
        self.backend = backend
        self.local_state = local_state or LocalStateStore()
        self.identity: Optional[Identity] = None
        self.memberships: Tuple[MembershipRecord, ...] = ()
        self._activation: Optional[Activation] = None
        self.initializing = True
        self.mode = SessionMode.READY if backend is not None else SessionMode.SETUP_REQUIRED
        self._initialized = False

    @property
    def organization(self) -> Optional[OrganizationRecord]:
        return self._activation.organization if self._activation else None

    @property
    def membership(self) -> Optional[MembershipRecord]:
        return self._activation.membership if self._activation else None

    @property
    def capabilities(self) -> Optional[CapabilitySet]:
        return self._activation.capabilities if self._activation else None

    @property
    def active_organization_id(self) -> Optional[str]:
        return self._activation.organization.id if self._activation else None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    def actor(self) -> ActorContext:
        """
        Context for downstream services.

        Raises:
            AuthenticationError: nobody is signed in
            OrganizationUnavailable: no organization is active
        """
        if self.identity is None:
            raise AuthenticationError("Not signed in")
        if self._activation is None:
            raise OrganizationUnavailable("No active organization")
        return ActorContext(
            user_id=self.identity.id,
            organization_id=self._activation.organization.id,
            capabilities=self._activation.capabilities,
        )

    async def init(self):
        """Run bootstrap once; later calls are no-ops until dispose()."""
        if self._initialized:
            return
        self._initialized = True
        await self.bootstrap()

    def dispose(self):
        """Drop in-memory state. Persisted state is left for the next bootstrap."""
        self._clear_memory()
        self.initializing = True
        self._initialized = False

    async def bootstrap(self):
        """
        Restore a persisted session at process start.

        Never raises. Without a backend, or when the backend cannot be
        reached, the store switches to setup_required mode.
        """
        self.initializing = True
        try:
            if self.backend is None:
                self.mode = SessionMode.SETUP_REQUIRED
                logger.warning("No session backend configured, setup required")
                return

            session = await self.backend.current_session()
            if session is None:
                logger.debug("No persisted session to restore")
                return
            await self._load_user_data(session)
            self.mode = SessionMode.READY
        except (BackendUnavailable, NotConfigured) as e:
            self.mode = SessionMode.SETUP_REQUIRED
            logger.warning(
                f"Session backend unavailable during bootstrap: {e.message}",
                extra={'details': e.details}
            )
        except QuoteDeskException as e:
            logger.error(
                f"Session bootstrap failed: {e.message}",
                extra={'details': e.details}
            )
        except Exception:
            logger.exception("Unexpected error during session bootstrap")
        finally:
            self.initializing = False

    def _require_backend(self) -> SessionBackend:
        if self.backend is None:
            raise NotConfigured("No session backend configured")
        return self.backend

    def _require_identity(self) -> Identity:
        if self.identity is None:
            raise AuthenticationError("Not signed in")
        return self.identity

    async def sign_in(self, email: str, password: str) -> Optional[Identity]:
        """
        Authenticate and load memberships and the active organization.

        Returns:
            The signed-in Identity, or None if the session turned out to
            be corrupted (and was signed out)

        Raises:
            InvalidCredentials, BackendUnavailable, NotConfigured
        """
        backend = self._require_backend()
        session = await backend.authenticate(email, password)
        await self._load_user_data(session)
        self.mode = SessionMode.READY
        if self.identity is not None:
            logger.info("User signed in", extra={'user_id': self.identity.id})
        return self.identity

    async def sign_up(self, email: str, password: str, full_name: str,
                      organization_name: str) -> Optional[Identity]:
        """Register an identity and its first organization, then sign in as it."""
        backend = self._require_backend()
        session = await backend.register(email, password, full_name)
        await backend.create_organization(session.id, organization_name)
        await self._load_user_data(session)
        self.mode = SessionMode.READY
        return self.identity

    async def sign_out(self):
        """
        Revoke the remote session (best effort) and clear all local state.

        Safe to call repeatedly.
        """
        user_id = self.identity.id if self.identity else None
        try:
            if self.backend is not None:
                await self.backend.revoke_session()
        except Exception as e:
            SecurityLogger.log_sign_out_revoke_failed(user_id, str(e))
        finally:
            self._clear_memory()
            self.local_state.clear()
        if user_id:
            logger.info("User signed out", extra={'user_id': user_id})

    async def _load_user_data(self, session: AuthIdentity):
        """
        Load profile, memberships and the active organization for an
        authenticated identity, then commit them together.
        """
        backend = self._require_backend()
        profile = await backend.fetch_profile(session.id)
        if profile is None:
            SecurityLogger.log_corrupted_session(session.id)
            await self.sign_out()
            return

        memberships = await load_memberships(backend, profile.id)
        target = select_target(memberships, self.local_state.get(CURRENT_ORGANIZATION_KEY))
        activation = None
        if target is not None:
            try:
                activation = await activate(backend, profile.id, target)
            except OrganizationUnavailable:
                logger.warning(
                    "Could not activate organization at sign-in",
                    extra={'user_id': profile.id, 'organization_id': target}
                )

        self.identity = profile
        self.memberships = memberships
        self._apply(activation, forget_saved=target is None)

    async def refresh_memberships(self):
        """
        Reload memberships. The active organization is kept unless it is
        no longer held, in which case the first remaining one is selected.
        """
        backend = self._require_backend()
        identity = self._require_identity()
        memberships = await load_memberships(backend, identity.id)
        target = select_target(memberships, self.active_organization_id)
        activation = None
        if target is not None:
            try:
                activation = await activate(backend, identity.id, target)
            except OrganizationUnavailable:
                logger.warning(
                    "Active organization became unavailable",
                    extra={'user_id': identity.id, 'organization_id': target}
                )
        self.memberships = memberships
        self._apply(activation)

    async def switch_organization(self, organization_id) -> Activation:
        """
        Make another organization active.

        Raises:
            OrganizationUnavailable: the organization or an active
                membership in it cannot be loaded; the previous selection
                is kept
        """
        backend = self._require_backend()
        identity = self._require_identity()
        activation = await activate(backend, identity.id, str(organization_id))
        self._apply(activation)
        logger.info(
            "Switched organization",
            extra={'user_id': identity.id, 'organization_id': activation.organization.id}
        )
        return activation

    async def create_organization(self, name: str) -> OrganizationRecord:
        """Create an organization owned by the current identity and switch to it."""
        backend = self._require_backend()
        identity = self._require_identity()
        organization = await backend.create_organization(identity.id, name)
        self.memberships = await load_memberships(backend, identity.id)
        await self.switch_organization(organization.id)
        return organization

    async def update_profile(self, full_name: Optional[str] = None,
                             email: Optional[str] = None) -> Identity:
        """
        Edit the signed-in identity's name and/or email.

        Raises:
            ValidationError: invalid or already registered email
        """
        backend = self._require_backend()
        identity = self._require_identity()
        self.identity = await backend.update_profile(identity.id, full_name=full_name, email=email)
        return self.identity

    async def change_password(self, old_password: str, new_password: str):
        """
        Change the signed-in identity's password.

        Raises:
            InvalidCredentials: old_password is wrong
            ValidationError: new_password is too weak
        """
        backend = self._require_backend()
        identity = self._require_identity()
        await backend.change_password(identity.id, old_password, new_password)
        logger.info("Password changed", extra={'user_id': identity.id})

    def _apply(self, activation: Optional[Activation], forget_saved: bool = True):
        """
        Install an activation. With no activation the saved organization is
        deleted unless forget_saved is false.
        """
        self._activation = activation
        if activation is None:
            if forget_saved:
                self.local_state.delete(CURRENT_ORGANIZATION_KEY)
        else:
            self.local_state.set(CURRENT_ORGANIZATION_KEY, activation.organization.id)

    def _clear_memory(self):
        self.identity = None
        self.memberships = ()
        self._activation = None


def build_session_store(local_state: Optional[LocalStateStore] = None) -> SessionStore:
    """
    Construct the process session store from settings.

    QUOTEDESK_SESSION_BACKEND is a dotted path to a SessionBackend
    subclass; an empty value leaves the store in setup_required mode.
    """
    local_state = local_state or LocalStateStore()
    backend_path = getattr(settings, 'QUOTEDESK_SESSION_BACKEND', '')
    backend = None
    if backend_path:
        backend = import_string(backend_path)(local_state=local_state)
    return SessionStore(backend, local_state=local_state)
