"""
RBAC models for multi-organization access control.

Implements:
- User: global identity (can belong to several organizations)
- Membership: identity x organization with role and status
- AuditLog: audit trail for membership changes and quote operations
"""
import logging
from django.db import models, transaction, DatabaseError
from django.contrib.auth.hashers import make_password, check_password
from django.utils import timezone
from apps.core.models import BaseModel
from apps.rbac.capabilities import Role, MembershipStatus

logger = logging.getLogger(__name__)


class UserManager(models.Manager):
    """
    Manager for User queries.

    Compatible with Django's authentication system.
    """

    def active(self):
        """Users that can still sign in."""
        return self.filter(is_active=True)

    def by_email(self, email):
        """Find user by email."""
        return self.filter(email=self.normalize_email(email)).first()

    def create_user(self, email, password=None, **extra_fields):
        """Create a new user with hashed password."""
        if not email:
            raise ValueError("An email address is required")

        email = self.normalize_email(email)
        extra_fields.setdefault('is_active', True)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        user.save(using=self._db)
        return user

    @staticmethod
    def normalize_email(email):
        """
        Lowercase the domain part of an email address.
        """
        email = (email or '').strip()
        try:
            email_name, domain_part = email.rsplit('@', 1)
        except ValueError:
            pass
        else:
            email = email_name + '@' + domain_part.lower()
        return email

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(BaseModel):
    """
    Global user identity - can belong to multiple organizations.

    Authentication happens at the User level, authorization at the
    Membership level. Users are never deleted; deactivation clears
    is_active.

    This is the AUTH_USER_MODEL for the project.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="Sign-in email, unique across organizations"
    )
    full_name = models.CharField(
        max_length=200,
        blank=True,
        help_text="Display name"
    )
    password_hash = models.CharField(
        max_length=255,
        help_text="Django password hash",
        db_column='password_hash'
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Deactivated identities cannot sign in"
    )
    last_login_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Most recent successful sign-in"
    )

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active', 'created_at'], name='users_active_created_idx'),
        ]

    def __str__(self):
        return self.email

    @property
    def password(self):
        """Alias for password_hash."""
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        """Verify a raw password against the stored hash."""
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        """Hash and store a new password (not saved)."""
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        """Full name, falling back to the email address."""
        return self.full_name or self.email

    def get_username(self):
        return self.email

    def update_last_login(self):
        """Stamp the sign-in time."""
        self.last_login_at = timezone.now()
        self.save(update_fields=['last_login_at'])

    def deactivate(self):
        self.is_active = False
        self.save(update_fields=['is_active', 'updated_at'])

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    def natural_key(self):
        return (self.email,)


class MembershipManager(models.Manager):
    """Manager for Membership queries."""

    def for_organization(self, organization):
        """Active memberships of an organization."""
        return self.filter(organization=organization, status=MembershipStatus.ACTIVE)

    def for_user(self, user):
        """All memberships of a user, oldest first."""
        return self.filter(user=user).select_related('organization').order_by('joined_at')

    def get_membership(self, organization, user):
        """Get specific organization-user membership."""
        return self.filter(organization=organization, user=user).first()

    def active_admins(self, organization):
        return self.for_organization(organization).filter(role=Role.ADMIN)


class Membership(BaseModel):
    """
    Association between User and Organization with a role.

    At most one membership exists per (user, organization). A user may
    hold different roles in different organizations. Memberships that are
    not active grant no capabilities.
    """

    organization = models.ForeignKey(
        'organizations.Organization',
        on_delete=models.CASCADE,
        related_name='memberships',
        db_index=True,
        help_text="Organization this membership belongs to"
    )
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='memberships',
        db_index=True,
        help_text="Member identity"
    )
    role = models.CharField(
        max_length=20,
        choices=Role.choices,
        default=Role.AGENT,
        help_text="Role within the organization"
    )
    status = models.CharField(
        max_length=20,
        choices=MembershipStatus.choices,
        default=MembershipStatus.ACTIVE,
        db_index=True,
        help_text="Membership status"
    )
    joined_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the user joined the organization"
    )

    objects = MembershipManager()

    class Meta:
        db_table = 'memberships'
        ordering = ['joined_at']
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'organization'],
                name='unique_membership_per_organization',
            ),
        ]
        indexes = [
            models.Index(fields=['user', 'status'], name='memberships_user_status_idx'),
            models.Index(fields=['organization', 'role'], name='memberships_org_role_idx'),
        ]

    def __str__(self):
        return f"{self.user.email} @ {self.organization.name} ({self.role})"

    @property
    def is_active(self):
        return self.status == MembershipStatus.ACTIVE


class AuditLogManager(models.Manager):
    """Manager for AuditLog queries with organization scoping."""

    def for_organization(self, organization):
        return self.filter(organization=organization)

    def for_user(self, user):
        return self.filter(user=user)

    def by_action(self, action):
        return self.filter(action=action)

    def by_target(self, target_type, target_id=None):
        """Get audit logs for a target type and optionally target ID."""
        qs = self.filter(target_type=target_type)
        if target_id:
            qs = qs.filter(target_id=target_id)
        return qs


class AuditLog(BaseModel):
    """
    Audit trail for membership changes and quote operations.

    Readable only by holders of can_view_audit_logs.
    """

    organization = models.ForeignKey(
        'organizations.Organization',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='audit_logs',
        db_index=True,
        help_text="Organization this action belongs to"
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="Acting identity; empty for system writes"
    )
    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'quote_approved', 'member_role_changed')"
    )
    target_type = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Type of target entity (e.g., 'Quote', 'Membership')"
    )
    target_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Primary key of the affected record"
    )
    diff = models.JSONField(
        default=dict,
        blank=True,
        help_text="Field values before and after the change"
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Free-form context for the entry"
    )

    objects = AuditLogManager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['organization', 'created_at'], name='audit_org_created_idx'),
            models.Index(fields=['target_type', 'target_id'], name='audit_target_idx'),
            models.Index(fields=['organization', 'action', 'created_at'], name='audit_org_action_idx'),
        ]

    def __str__(self):
        user_str = self.user.email if self.user else 'System'
        return f"{self.organization_id} - {user_str} - {self.action}"

    @classmethod
    def log_action(cls, action, user=None, organization=None, target_type=None,
                   target_id=None, diff=None, metadata=None):
        """
        Record an audit entry for an organization.

        Args:
            action: Audit action name
            user: User (or user id) performing the action
            organization: Organization (or organization id) context
            target_type: Model name of the affected record
            target_id: Primary key of the affected record
            diff: Field values before and after
            metadata: Free-form context

        Returns:
            AuditLog instance, or None if the write failed
        """
        log_data = {
            'action': action,
            'target_type': target_type or '',
            'target_id': target_id,
            'diff': diff or {},
            'metadata': metadata or {},
        }
        if isinstance(user, User):
            log_data['user'] = user
        else:
            log_data['user_id'] = user
        if isinstance(organization, models.Model):
            log_data['organization'] = organization
        else:
            log_data['organization_id'] = organization

        try:
            with transaction.atomic():
                return cls.objects.create(**log_data)
        except DatabaseError as e:
            logger.error(
                f"Audit entry not written: {e}",
                extra={'action': action},
                exc_info=True
            )
            return None
