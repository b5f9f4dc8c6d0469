"""
Tests for product and client management.
"""
from decimal import Decimal

import pytest

from apps.catalog.models import Client, Product
from apps.catalog.services import CatalogService
from apps.core.exceptions import NotFound, PermissionDeniedError, ValidationError
from apps.rbac.models import AuditLog


@pytest.mark.django_db
class TestProducts:
    """Test product operations and organization isolation."""

    def test_manager_creates_product(self, manager_actor, organization):
        product = CatalogService.create_product(
            manager_actor, sku='GADGET-9', name='Gadget', price='49.99', tax_rate=16,
        )

        assert product.organization_id == organization.id
        assert product.price == Decimal('49.99')
        assert AuditLog.objects.filter(action='product_created', target_id=product.id).exists()

    def test_agent_cannot_create_product(self, agent_actor):
        with pytest.raises(PermissionDeniedError):
            CatalogService.create_product(agent_actor, sku='X', name='X', price=1)

    def test_duplicate_sku_in_same_organization(self, manager_actor, product):
        with pytest.raises(ValidationError):
            CatalogService.create_product(manager_actor, sku=product.sku, name='Copy', price=1)

    def test_same_sku_in_other_organization(self, make_member, other_organization, product):
        from apps.rbac.capabilities import capabilities_for
        from apps.rbac.records import ActorContext
        user = make_member(other_organization, 'admin', email='other-admin@example.com')
        actor = ActorContext(str(user.id), str(other_organization.id), capabilities_for('admin'))

        created = CatalogService.create_product(actor, sku=product.sku, name='Widget', price=1)

        assert created.organization_id == other_organization.id

    @pytest.mark.parametrize('data', [
        {'sku': 'A', 'name': 'A'},
        {'sku': 'A', 'name': 'A', 'price': '-1'},
        {'sku': 'A', 'name': 'A', 'price': 'abc'},
        {'sku': 'A', 'name': 'A', 'price': 1, 'tax_rate': 101},
        {'sku': '', 'name': 'A', 'price': 1},
        {'sku': 'A', 'name': 'A', 'price': 1, 'colour': 'red'},
    ])
    def test_invalid_product_data(self, manager_actor, data):
        with pytest.raises(ValidationError):
            CatalogService.create_product(manager_actor, **data)

    def test_update_product_records_diff(self, manager_actor, product):
        CatalogService.update_product(manager_actor, product.id, price='120.00')

        product.refresh_from_db()
        assert product.price == Decimal('120.00')
        entry = AuditLog.objects.get(action='product_updated')
        assert entry.diff['price'] == {'old': '100.00', 'new': '120.00'}

    def test_deactivated_product_is_hidden(self, manager_actor, product):
        CatalogService.deactivate_product(manager_actor, product.id)

        assert product not in CatalogService.list_products(manager_actor)
        assert product in CatalogService.list_products(manager_actor, include_inactive=True)

    def test_search(self, agent_actor, product):
        assert list(CatalogService.list_products(agent_actor, query='widg')) == [product]
        assert not CatalogService.list_products(agent_actor, query='nothing').exists()

    def test_product_of_other_organization_is_not_found(self, agent_actor, other_organization):
        foreign = Product.objects.create(organization=other_organization, sku='F', name='F', price=1)
        with pytest.raises(NotFound):
            CatalogService.get_product(agent_actor, foreign.id)
        with pytest.raises(NotFound):
            CatalogService.get_product(agent_actor, 'not-a-uuid')


@pytest.mark.django_db
class TestClients:
    """Test client operations."""

    def test_payment_terms_default_from_organization(self, manager_actor):
        client = CatalogService.create_client(manager_actor, name='Umbrella')
        assert client.payment_terms == 'Net 30 Days'

    def test_explicit_payment_terms(self, manager_actor):
        client = CatalogService.create_client(manager_actor, name='Umbrella', payment_terms='Due on receipt')
        assert client.payment_terms == 'Due on receipt'

    def test_agent_cannot_create_client(self, agent_actor):
        with pytest.raises(PermissionDeniedError):
            CatalogService.create_client(agent_actor, name='Umbrella')

    def test_name_required(self, manager_actor):
        with pytest.raises(ValidationError):
            CatalogService.create_client(manager_actor, name='')

    def test_update_client(self, manager_actor, client_company):
        CatalogService.update_client(manager_actor, client_company.id, phone='+1 555 0100')

        client_company.refresh_from_db()
        assert client_company.phone == '+1 555 0100'
        assert AuditLog.objects.filter(action='client_updated').exists()

    def test_list_clients_is_scoped(self, agent_actor, client_company, other_organization):
        Client.objects.create(organization=other_organization, name='Initech')

        assert list(CatalogService.list_clients(agent_actor, query='init')) == [client_company]
