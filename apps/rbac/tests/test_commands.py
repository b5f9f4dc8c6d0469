"""
Tests for the create_admin and seed_demo management commands.
"""
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from apps.catalog.models import Product
from apps.organizations.models import Organization
from apps.quotes.models import Quote, QuoteStatus
from apps.rbac.capabilities import MembershipStatus, Role
from apps.rbac.models import Membership, User


@pytest.mark.django_db
class TestCreateAdmin:

    def test_creates_user_and_membership(self, organization):
        call_command(
            'create_admin',
            organization=str(organization.id),
            email='boss@example.com',
            create_user=True,
            password='testpass123',
            stdout=StringIO(),
        )

        membership = Membership.objects.get(organization=organization, user__email='boss@example.com')
        assert membership.role == Role.ADMIN
        assert membership.status == MembershipStatus.ACTIVE

    def test_promotes_existing_member_by_organization_name(self, agent_user, organization):
        call_command('create_admin', organization='Acme Sales', email='agent@example.com', stdout=StringIO())

        membership = Membership.objects.get(organization=organization, user=agent_user)
        assert membership.role == Role.ADMIN

    def test_unknown_user_without_create(self, organization):
        with pytest.raises(CommandError):
            call_command('create_admin', organization=str(organization.id), email='nobody@example.com')

    def test_create_user_requires_password(self, organization):
        with pytest.raises(CommandError):
            call_command('create_admin', organization=str(organization.id), email='x@example.com', create_user=True)

    def test_unknown_organization(self, db):
        with pytest.raises(CommandError):
            call_command('create_admin', organization='Nowhere', email='x@example.com')


@pytest.mark.django_db
class TestSeedDemo:

    def test_creates_demo_data(self):
        call_command('seed_demo', stdout=StringIO())

        organization = Organization.objects.get(name='Demo Sales Co')
        assert Membership.objects.filter(organization=organization).count() == 3
        assert Product.objects.filter(organization=organization).count() == 3
        quote = Quote.objects.get(organization=organization)
        assert quote.status == QuoteStatus.DRAFT
        assert User.objects.get(email='agent@demo.quotedesk.test').check_password('demo-pass-123')

    def test_second_run_is_a_no_op(self):
        call_command('seed_demo', stdout=StringIO())
        call_command('seed_demo', skip_if_exists=True, stdout=StringIO())

        assert Organization.objects.filter(name='Demo Sales Co').count() == 1
