"""
Catalog service for product and client management.

All operations are scoped to the actor's organization. Writes require
can_manage_products / can_manage_clients; reads are open to every member.
"""
import logging
from decimal import Decimal, InvalidOperation

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction

from apps.catalog.models import Client, Product
from apps.core.exceptions import NotFound, PermissionDeniedError, ValidationError
from apps.core.logging import SecurityLogger
from apps.organizations.models import Organization
from apps.rbac.models import AuditLog

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = ('sku', 'name', 'description', 'price', 'tax_rate', 'category', 'is_active')
CLIENT_FIELDS = ('name', 'contact_person', 'email', 'phone', 'address', 'payment_terms')


def _require(actor, allowed, action):
    if not allowed:
        SecurityLogger.log_permission_denied(actor.user_id, actor.organization_id, action)
        raise PermissionDeniedError(
            f"Not allowed to {action.replace('_', ' ')}",
            details={'action': action}
        )


def _check_fields(data, allowed):
    unknown = set(data) - set(allowed)
    if unknown:
        raise ValidationError("Unknown fields", details={'fields': sorted(unknown)})


def _check_decimal(data, key, maximum=None):
    if key not in data:
        return
    try:
        value = Decimal(str(data[key]))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid {key}", details={key: str(data[key])})
    if value < 0 or (maximum is not None and value > maximum):
        raise ValidationError(f"{key} out of range", details={key: str(value)})
    data[key] = value


class CatalogService:
    """Service for catalog operations with organization scoping."""

    @staticmethod
    def list_products(actor, include_inactive=False, query=None):
        products = Product.objects.for_organization(actor.organization_id)
        if not include_inactive:
            products = products.active()
        if query:
            products = products.search(query)
        return products

    @staticmethod
    def get_product(actor, product_id) -> Product:
        try:
            return Product.objects.get(id=product_id, organization_id=actor.organization_id)
        except (Product.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFound("Product not found", details={'product_id': str(product_id)})

    @classmethod
    @transaction.atomic
    def create_product(cls, actor, **data) -> Product:
        """
        Create a product.

        Raises:
            PermissionDeniedError: actor lacks can_manage_products
            ValidationError: unknown fields, bad amounts or duplicate SKU
        """
        _require(actor, actor.capabilities.can_manage_products, 'manage_products')
        _check_fields(data, PRODUCT_FIELDS)
        if not data.get('sku') or not data.get('name'):
            raise ValidationError("SKU and name are required")
        if 'price' not in data:
            raise ValidationError("Price is required")
        _check_decimal(data, 'price')
        _check_decimal(data, 'tax_rate', maximum=Decimal('100'))

        try:
            with transaction.atomic():
                product = Product.objects.create(organization_id=actor.organization_id, **data)
        except IntegrityError:
            raise ValidationError("SKU already exists", details={'sku': data['sku']})

        AuditLog.log_action(
            action='product_created',
            user=actor.user_id,
            organization=actor.organization_id,
            target_type='Product',
            target_id=product.id,
            metadata={'sku': product.sku},
        )
        return product

    @classmethod
    @transaction.atomic
    def update_product(cls, actor, product_id, **data) -> Product:
        _require(actor, actor.capabilities.can_manage_products, 'manage_products')
        _check_fields(data, PRODUCT_FIELDS)
        _check_decimal(data, 'price')
        _check_decimal(data, 'tax_rate', maximum=Decimal('100'))

        product = cls.get_product(actor, product_id)
        diff = {}
        for key, value in data.items():
            old = getattr(product, key)
            if old != value:
                diff[key] = {'old': str(old), 'new': str(value)}
                setattr(product, key, value)

        try:
            with transaction.atomic():
                product.save()
        except IntegrityError:
            raise ValidationError("SKU already exists", details={'sku': product.sku})

        if diff:
            AuditLog.log_action(
                action='product_updated',
                user=actor.user_id,
                organization=actor.organization_id,
                target_type='Product',
                target_id=product.id,
                diff=diff,
            )
        return product

    @classmethod
    def deactivate_product(cls, actor, product_id) -> Product:
        return cls.update_product(actor, product_id, is_active=False)

    @staticmethod
    def list_clients(actor, query=None):
        clients = Client.objects.for_organization(actor.organization_id)
        if query:
            clients = clients.filter(name__icontains=query)
        return clients

    @staticmethod
    def get_client(actor, client_id) -> Client:
        try:
            return Client.objects.get(id=client_id, organization_id=actor.organization_id)
        except (Client.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFound("Client not found", details={'client_id': str(client_id)})

    @classmethod
    @transaction.atomic
    def create_client(cls, actor, **data) -> Client:
        _require(actor, actor.capabilities.can_manage_clients, 'manage_clients')
        _check_fields(data, CLIENT_FIELDS)
        if not data.get('name'):
            raise ValidationError("Client name is required")
        if not data.get('payment_terms'):
            organization = Organization.objects.get(id=actor.organization_id)
            data['payment_terms'] = organization.get_setting('default_payment_terms') or ''

        client = Client.objects.create(organization_id=actor.organization_id, **data)
        AuditLog.log_action(
            action='client_created',
            user=actor.user_id,
            organization=actor.organization_id,
            target_type='Client',
            target_id=client.id,
        )
        return client

    @classmethod
    @transaction.atomic
    def update_client(cls, actor, client_id, **data) -> Client:
        _require(actor, actor.capabilities.can_manage_clients, 'manage_clients')
        _check_fields(data, CLIENT_FIELDS)

        client = cls.get_client(actor, client_id)
        diff = {}
        for key, value in data.items():
            old = getattr(client, key)
            if old != value:
                diff[key] = {'old': str(old), 'new': str(value)}
                setattr(client, key, value)
        client.save()

        if diff:
            AuditLog.log_action(
                action='client_updated',
                user=actor.user_id,
                organization=actor.organization_id,
                target_type='Client',
                target_id=client.id,
                diff=diff,
            )
        return client
