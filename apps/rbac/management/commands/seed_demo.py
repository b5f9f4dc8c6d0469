"""
Management command to create a demo organization.

Creates:
- Demo organization with default settings
- Admin, manager and agent users with active memberships
- A small product catalog and one client
- One draft quote by the agent

This is useful for demos and local development.
"""
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction

from apps.catalog.models import Client, Product
from apps.organizations.models import Organization
from apps.organizations.services import OrganizationService
from apps.quotes.services import QuoteService
from apps.rbac.capabilities import MembershipStatus, Role, capabilities_for
from apps.rbac.models import Membership, User
from apps.rbac.records import ActorContext


class Command(BaseCommand):
    help = 'Create demo organization with users, catalog and a draft quote'

    DEMO_USERS = [
        {'email': 'admin@demo.quotedesk.test', 'full_name': 'Alice Admin', 'role': Role.ADMIN},
        {'email': 'manager@demo.quotedesk.test', 'full_name': 'Bob Manager', 'role': Role.MANAGER},
        {'email': 'agent@demo.quotedesk.test', 'full_name': 'Carol Agent', 'role': Role.AGENT},
    ]

    DEMO_PRODUCTS = [
        {'sku': 'CONSULT-HR', 'name': 'Consulting hour', 'price': Decimal('150.00'), 'tax_rate': Decimal('16.00')},
        {'sku': 'LIC-STD', 'name': 'Standard licence', 'price': Decimal('1200.00'), 'tax_rate': Decimal('16.00')},
        {'sku': 'SUPPORT-YR', 'name': 'Annual support', 'price': Decimal('480.00'), 'tax_rate': Decimal('0.00')},
    ]

    def add_arguments(self, parser):
        parser.add_argument(
            '--organization-name',
            type=str,
            default='Demo Sales Co',
            help='Name for the demo organization',
        )
        parser.add_argument(
            '--password',
            type=str,
            default='demo-pass-123',
            help='Password for every demo user',
        )
        parser.add_argument(
            '--skip-if-exists',
            action='store_true',
            help='Do nothing if an organization with that name exists',
        )

    @transaction.atomic
    def handle(self, *args, **options):
        name = options['organization_name']
        password = options['password']

        if Organization.objects.filter(name=name).exists():
            if options['skip_if_exists']:
                self.stdout.write(self.style.WARNING(f'Organization already exists: {name}'))
                return
            self.stdout.write(self.style.WARNING(
                f'Organization already exists: {name}\n'
                f'Use --skip-if-exists or choose a different name'
            ))
            return

        users = {}
        for user_data in self.DEMO_USERS:
            user = User.objects.by_email(user_data['email'])
            if user is None:
                user = User.objects.create_user(
                    email=user_data['email'],
                    password=password,
                    full_name=user_data['full_name'],
                )
                self.stdout.write(self.style.SUCCESS(f'Created user: {user.email}'))
            users[user_data['role']] = user

        organization = OrganizationService.create_organization(users[Role.ADMIN], name)
        for role in (Role.MANAGER, Role.AGENT):
            Membership.objects.create(
                organization=organization,
                user=users[role],
                role=role,
                status=MembershipStatus.ACTIVE,
            )
        self.stdout.write(self.style.SUCCESS(f'Created organization: {organization.name} ({organization.id})'))

        products = [
            Product.objects.create(organization=organization, **product_data)
            for product_data in self.DEMO_PRODUCTS
        ]
        client = Client.objects.create(
            organization=organization,
            name='Initech Ltd',
            contact_person='Peter Gibbons',
            email='peter@initech.test',
            payment_terms=organization.get_setting('default_payment_terms'),
        )

        agent = ActorContext(
            user_id=str(users[Role.AGENT].id),
            organization_id=str(organization.id),
            capabilities=capabilities_for(Role.AGENT),
        )
        quote = QuoteService.create_quote(
            agent,
            client,
            [
                {'product': products[0], 'quantity': 10},
                {'product': products[1], 'quantity': 2, 'discount_percent': 5},
            ],
        )
        self.stdout.write(self.style.SUCCESS(f'Created draft quote {quote.quote_number}'))

        self.stdout.write('\nDemo users:')
        for user_data in self.DEMO_USERS:
            self.stdout.write(f'  {user_data["role"].label:<12} {user_data["email"]}')
        self.stdout.write(f'Password: {password}')
