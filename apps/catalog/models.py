"""
Catalog models for clients and products.

Both are strictly scoped to an organization; quotes reference them.
"""
from decimal import Decimal
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from apps.core.models import BaseModel


class ProductQuerySet(models.QuerySet):
    """Custom QuerySet for Product with chainable methods."""

    def for_organization(self, organization):
        return self.filter(organization=organization)

    def active(self):
        return self.filter(is_active=True)

    def search(self, query):
        """Search products by name, SKU or description."""
        return self.filter(
            models.Q(name__icontains=query) |
            models.Q(sku__icontains=query) |
            models.Q(description__icontains=query)
        )


class ProductManager(models.Manager):
    """Manager for product queries with organization scoping."""

    def get_queryset(self):
        return ProductQuerySet(self.model, using=self._db)

    def for_organization(self, organization):
        return self.get_queryset().for_organization(organization)

    def active(self):
        """
        Get only active products.

        WARNING: This method does NOT filter by organization.
        Always chain with .for_organization(organization).
        """
        return self.get_queryset().active()

    def by_sku(self, organization, sku):
        return self.get_queryset().filter(organization=organization, sku=sku).first()


class Product(BaseModel):
    """
    Product or service that can be put on a quote.

    SKU is unique within an organization. Deactivated products stay
    referenced by existing quote items but cannot be added to new quotes.
    """

    organization = models.ForeignKey(
        'organizations.Organization',
        on_delete=models.CASCADE,
        related_name='products',
        db_index=True,
        help_text="Organization this product belongs to"
    )
    sku = models.CharField(
        max_length=100,
        help_text="Stock Keeping Unit (unique per organization)"
    )
    name = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Product name"
    )
    description = models.TextField(
        blank=True,
        help_text="Product description"
    )
    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0'))],
        help_text="Unit price"
    )
    tax_rate = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal('0'),
        validators=[MinValueValidator(Decimal('0')), MaxValueValidator(Decimal('100'))],
        help_text="Tax rate in percent"
    )
    category = models.CharField(
        max_length=100,
        blank=True,
        help_text="Free-form category"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether product can be added to new quotes"
    )

    objects = ProductManager()

    class Meta:
        db_table = 'products'
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(
                fields=['organization', 'sku'],
                name='unique_product_sku_per_organization',
            ),
        ]
        indexes = [
            models.Index(fields=['organization', 'is_active'], name='products_org_active_idx'),
            models.Index(fields=['organization', 'category'], name='products_org_category_idx'),
        ]

    def __str__(self):
        return f"{self.sku} - {self.name}"


class ClientManager(models.Manager):
    """Manager for client queries with organization scoping."""

    def for_organization(self, organization):
        return self.filter(organization=organization)


class Client(BaseModel):
    """Customer company that receives quotes."""

    organization = models.ForeignKey(
        'organizations.Organization',
        on_delete=models.CASCADE,
        related_name='clients',
        db_index=True,
        help_text="Organization this client belongs to"
    )
    name = models.CharField(
        max_length=255,
        help_text="Client company name"
    )
    contact_person = models.CharField(
        max_length=255,
        blank=True,
        help_text="Primary contact"
    )
    email = models.EmailField(
        blank=True,
        help_text="Contact email"
    )
    phone = models.CharField(
        max_length=50,
        blank=True,
        help_text="Contact phone"
    )
    address = models.TextField(
        blank=True,
        help_text="Postal address"
    )
    payment_terms = models.CharField(
        max_length=100,
        blank=True,
        help_text="Payment terms, defaults to the organization setting"
    )

    objects = ClientManager()

    class Meta:
        db_table = 'clients'
        ordering = ['name']
        indexes = [
            models.Index(fields=['organization', 'name'], name='clients_org_name_idx'),
        ]

    def __str__(self):
        return self.name
