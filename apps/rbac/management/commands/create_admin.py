"""
Management command to make a user an active admin of an organization.

Creates the user (with --create-user) and the membership if needed, and
re-activates or promotes an existing membership.
"""
import uuid

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from apps.organizations.models import Organization
from apps.rbac.capabilities import MembershipStatus, Role
from apps.rbac.models import AuditLog, Membership, User


class Command(BaseCommand):
    help = 'Make a user an active admin of an organization'

    def add_arguments(self, parser):
        parser.add_argument(
            '--organization',
            type=str,
            required=True,
            help='Organization ID or exact name',
        )
        parser.add_argument(
            '--email',
            type=str,
            required=True,
            help='User email address',
        )
        parser.add_argument(
            '--create-user',
            action='store_true',
            help='Create user if they do not exist (requires --password)',
        )
        parser.add_argument(
            '--password',
            type=str,
            help='Password for new user (only used with --create-user)',
        )
        parser.add_argument(
            '--full-name',
            type=str,
            default='',
            help='Display name for new user',
        )

    def _find_organization(self, value):
        try:
            organization = Organization.objects.filter(id=uuid.UUID(value)).first()
        except ValueError:
            organization = None
        if organization is None:
            matches = list(Organization.objects.filter(name=value)[:2])
            if len(matches) > 1:
                raise CommandError(f'Several organizations are named "{value}"; pass the ID instead')
            organization = matches[0] if matches else None
        if organization is None:
            raise CommandError(f'Organization not found: {value}')
        return organization

    @transaction.atomic
    def handle(self, *args, **options):
        email = options['email']
        password = options.get('password')

        if options['create_user'] and not password:
            raise CommandError('--password is required when using --create-user')

        organization = self._find_organization(options['organization'])
        self.stdout.write(f'Organization: {organization.name} ({organization.id})')

        user = User.objects.by_email(email)
        if user is None:
            if not options['create_user']:
                raise CommandError(
                    f'User not found: {email}\n'
                    f'Use --create-user --password=<password> to create the user'
                )
            user = User.objects.create_user(
                email=email,
                password=password,
                full_name=options.get('full_name', ''),
            )
            self.stdout.write(self.style.SUCCESS(f'Created user: {user.email}'))

        membership = Membership.objects.get_membership(organization, user)
        diff = {}
        if membership is None:
            membership = Membership.objects.create(
                organization=organization,
                user=user,
                role=Role.ADMIN,
                status=MembershipStatus.ACTIVE,
            )
            self.stdout.write(self.style.SUCCESS(f'Created admin membership for {user.email}'))
        elif membership.role == Role.ADMIN and membership.status == MembershipStatus.ACTIVE:
            self.stdout.write(self.style.WARNING(f'{user.email} is already an active admin'))
            return
        else:
            diff = {
                'role': {'old': membership.role, 'new': Role.ADMIN.value},
                'status': {'old': membership.status, 'new': MembershipStatus.ACTIVE.value},
            }
            membership.role = Role.ADMIN
            membership.status = MembershipStatus.ACTIVE
            membership.save(update_fields=['role', 'status', 'updated_at'])
            self.stdout.write(self.style.SUCCESS(f'Promoted {user.email} to active admin'))

        AuditLog.log_action(
            action='member_role_changed' if diff else 'member_added',
            organization=organization,
            target_type='Membership',
            target_id=membership.id,
            diff=diff,
            metadata={'source': 'create_admin', 'email': user.email},
        )
