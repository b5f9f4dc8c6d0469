"""
Pytest configuration and fixtures.
"""
from decimal import Decimal

import pytest
from django.conf import settings
import django


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    # Fill in connection defaults (TIME_ZONE, etc.) for the replaced entry;
    # connections opened later in worker threads read this dict directly.
    from django.db import connections
    connections.configure_settings(settings.DATABASES)
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'quotedesk-test-default',
        },
        'local_state': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'quotedesk-test-local-state',
            'TIMEOUT': None,
        },
    }
    settings.PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
    django.setup()


@pytest.fixture(autouse=True)
def clear_caches():
    """Start every test with empty persisted local state and no revoked tokens."""
    from django.core.cache import caches
    caches['default'].clear()
    caches['local_state'].clear()
    yield
    caches['default'].clear()
    caches['local_state'].clear()


@pytest.fixture
def local_state():
    from apps.core.local_state import LocalStateStore
    return LocalStateStore()


@pytest.fixture
def organization(db):
    """Create a test organization."""
    from apps.organizations.models import Organization
    return Organization.objects.create(name='Acme Sales')


@pytest.fixture
def other_organization(db):
    """Create another organization for isolation tests."""
    from apps.organizations.models import Organization
    return Organization.objects.create(name='Globex Trading')


@pytest.fixture
def make_member(db):
    """Factory: user with a membership in an organization."""
    from apps.rbac.models import User, Membership

    def _make(organization, role, email=None, status='active', password='testpass123'):
        email = email or f"{role}-{organization.id.hex[:8]}@example.com"
        user = User.objects.by_email(email) or User.objects.create_user(
            email=email,
            password=password,
            full_name=role.title(),
        )
        Membership.objects.create(
            organization=organization,
            user=user,
            role=role,
            status=status,
        )
        return user

    return _make


@pytest.fixture
def admin_user(make_member, organization):
    return make_member(organization, 'admin', email='admin@example.com')


@pytest.fixture
def manager_user(make_member, organization):
    return make_member(organization, 'manager', email='manager@example.com')


@pytest.fixture
def agent_user(make_member, organization):
    return make_member(organization, 'agent', email='agent@example.com')


def _actor(user, organization, role):
    from apps.rbac.capabilities import capabilities_for
    from apps.rbac.records import ActorContext
    return ActorContext(
        user_id=str(user.id),
        organization_id=str(organization.id),
        capabilities=capabilities_for(role),
    )


@pytest.fixture
def admin_actor(admin_user, organization):
    return _actor(admin_user, organization, 'admin')


@pytest.fixture
def manager_actor(manager_user, organization):
    return _actor(manager_user, organization, 'manager')


@pytest.fixture
def agent_actor(agent_user, organization):
    return _actor(agent_user, organization, 'agent')


@pytest.fixture
def client_company(db, organization):
    """Create a test client."""
    from apps.catalog.models import Client
    return Client.objects.create(
        organization=organization,
        name='Initech',
        contact_person='Bill Lumbergh',
        email='bill@initech.example',
    )


@pytest.fixture
def product(db, organization):
    """Create a test product."""
    from apps.catalog.models import Product
    return Product.objects.create(
        organization=organization,
        sku='WIDGET-1',
        name='Widget',
        price=Decimal('100.00'),
        tax_rate=Decimal('10.00'),
    )
