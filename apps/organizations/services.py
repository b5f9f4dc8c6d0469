"""
Organization and team management service.

Handles:
- Organization creation with the creator as admin
- Organization settings updates (admins only)
- Member listing, role and status changes, removal

An organization always keeps at least one active admin.
"""
import logging
from typing import Any, Dict, List

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction

from apps.core.exceptions import NotFound, PermissionDeniedError, ValidationError
from apps.core.logging import SecurityLogger
from apps.organizations.models import Organization, SETTINGS_DEFAULTS, default_organization_settings
from apps.rbac.capabilities import MembershipStatus, Role
from apps.rbac.models import AuditLog, Membership, User

logger = logging.getLogger(__name__)


def _require(actor, allowed: bool, action: str):
    if not allowed:
        SecurityLogger.log_permission_denied(actor.user_id, actor.organization_id, action)
        raise PermissionDeniedError(
            f"Not allowed to {action.replace('_', ' ')}",
            details={'action': action, 'role': str(actor.role)}
        )


def _parse_role(value) -> Role:
    try:
        return Role(value)
    except ValueError:
        raise ValidationError("Unknown role", details={'role': str(value)})


def _parse_status(value) -> MembershipStatus:
    try:
        return MembershipStatus(value)
    except ValueError:
        raise ValidationError("Unknown membership status", details={'status': str(value)})


class OrganizationService:
    """Service for organization lifecycle and membership management."""

    @classmethod
    @transaction.atomic
    def create_organization(cls, user: User, name: str) -> Organization:
        """
        Create new organization with user as active admin.

        Raises:
            ValidationError: name is blank
        """
        name = (name or '').strip()
        if not name:
            raise ValidationError("Organization name is required")

        organization = Organization.objects.create(
            name=name,
            settings=default_organization_settings(),
        )
        Membership.objects.create(
            organization=organization,
            user=user,
            role=Role.ADMIN,
            status=MembershipStatus.ACTIVE,
        )

        AuditLog.log_action(
            action='organization_created',
            user=user,
            organization=organization,
            target_type='Organization',
            target_id=organization.id,
            metadata={'name': name}
        )
        logger.info(
            "Organization created",
            extra={'organization_id': str(organization.id), 'user_id': str(user.id)}
        )
        return organization

    @classmethod
    @transaction.atomic
    def update_settings(cls, actor, **changes) -> Organization:
        """
        Update settings of the actor's organization.

        Only admins may change settings; keys not in SETTINGS_DEFAULTS
        are rejected. ``name`` may be passed to rename the organization.
        """
        _require(actor, actor.capabilities.is_admin, 'update_settings')

        unknown = set(changes) - set(SETTINGS_DEFAULTS) - {'name'}
        if unknown:
            raise ValidationError(
                "Unknown organization settings",
                details={'keys': sorted(unknown)}
            )

        organization = Organization.objects.select_for_update().get(id=actor.organization_id)
        diff = {}
        if 'name' in changes:
            name = (changes.pop('name') or '').strip()
            if not name:
                raise ValidationError("Organization name is required")
            if name != organization.name:
                diff['name'] = {'old': organization.name, 'new': name}
                organization.name = name

        new_settings = dict(organization.settings)
        for key, value in changes.items():
            if new_settings.get(key) != value:
                diff[key] = {'old': new_settings.get(key), 'new': value}
                new_settings[key] = value
        organization.settings = new_settings
        organization.save()

        if diff:
            AuditLog.log_action(
                action='organization_settings_updated',
                user=actor.user_id,
                organization=organization,
                target_type='Organization',
                target_id=organization.id,
                diff=diff,
            )
        return organization


class TeamService:
    """
    Membership administration within the actor's organization.

    Every operation requires can_manage_users.
    """

    @staticmethod
    def list_members(actor) -> List[Membership]:
        _require(actor, actor.capabilities.can_manage_users, 'list_members')
        return list(
            Membership.objects.filter(organization_id=actor.organization_id)
            .select_related('user')
            .order_by('joined_at')
        )

    @staticmethod
    def _get_membership(actor, membership_id) -> Membership:
        try:
            return Membership.objects.select_for_update().select_related('user').get(
                id=membership_id,
                organization_id=actor.organization_id,
            )
        except (Membership.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFound("Membership not found", details={'membership_id': str(membership_id)})

    @staticmethod
    def _ensure_admin_remains(actor, membership: Membership, role=None, status=None):
        """Refuse changes that would leave the organization without an active admin."""
        if not (membership.role == Role.ADMIN and membership.status == MembershipStatus.ACTIVE):
            return
        stays_admin = (role or membership.role) == Role.ADMIN and \
            (status or membership.status) == MembershipStatus.ACTIVE
        if stays_admin:
            return
        other_admins = Membership.objects.active_admins(actor.organization_id).exclude(id=membership.id)
        if not other_admins.exists():
            raise ValidationError(
                "An organization must keep at least one active admin",
                details={'membership_id': str(membership.id)}
            )

    @classmethod
    @transaction.atomic
    def change_member_role(cls, actor, membership_id, role) -> Membership:
        _require(actor, actor.capabilities.can_manage_users, 'change_member_role')
        role = _parse_role(role)

        membership = cls._get_membership(actor, membership_id)
        cls._ensure_admin_remains(actor, membership, role=role)

        old_role = membership.role
        membership.role = role
        membership.save(update_fields=['role', 'updated_at'])

        AuditLog.log_action(
            action='member_role_changed',
            user=actor.user_id,
            organization=actor.organization_id,
            target_type='Membership',
            target_id=membership.id,
            diff={'role': {'old': old_role, 'new': role.value}},
        )
        return membership

    @classmethod
    @transaction.atomic
    def set_member_status(cls, actor, membership_id, status) -> Membership:
        _require(actor, actor.capabilities.can_manage_users, 'set_member_status')
        status = _parse_status(status)

        membership = cls._get_membership(actor, membership_id)
        cls._ensure_admin_remains(actor, membership, status=status)

        old_status = membership.status
        membership.status = status
        membership.save(update_fields=['status', 'updated_at'])

        AuditLog.log_action(
            action='member_status_changed',
            user=actor.user_id,
            organization=actor.organization_id,
            target_type='Membership',
            target_id=membership.id,
            diff={'status': {'old': old_status, 'new': status.value}},
        )
        return membership

    @classmethod
    @transaction.atomic
    def remove_member(cls, actor, membership_id):
        _require(actor, actor.capabilities.can_manage_users, 'remove_member')
        membership = cls._get_membership(actor, membership_id)
        cls._ensure_admin_remains(actor, membership, status=MembershipStatus.INACTIVE)

        AuditLog.log_action(
            action='member_removed',
            user=actor.user_id,
            organization=actor.organization_id,
            target_type='Membership',
            target_id=membership.id,
            metadata={'email': membership.user.email, 'role': membership.role},
        )
        membership.delete()

    @classmethod
    @transaction.atomic
    def add_member(cls, actor, email: str, role=Role.AGENT,
                   status=MembershipStatus.ACTIVE) -> Membership:
        """
        Add an existing user to the actor's organization.

        Invitation delivery is not handled here; the user must already
        have an account.
        """
        _require(actor, actor.capabilities.can_manage_users, 'add_member')
        role = _parse_role(role)
        status = _parse_status(status)
        user = User.objects.by_email(email)
        if user is None:
            raise NotFound("No user with that email", details={'email': email})
        if Membership.objects.filter(organization_id=actor.organization_id, user=user).exists():
            raise ValidationError("User is already a member", details={'email': email})

        membership = Membership.objects.create(
            organization_id=actor.organization_id,
            user=user,
            role=role,
            status=status,
        )
        AuditLog.log_action(
            action='member_added',
            user=actor.user_id,
            organization=actor.organization_id,
            target_type='Membership',
            target_id=membership.id,
            metadata={'email': user.email, 'role': membership.role},
        )
        return membership


def organization_settings(organization: Organization) -> Dict[str, Any]:
    """Settings with defaults filled in for missing keys."""
    merged = default_organization_settings()
    merged.update(organization.settings or {})
    return merged
