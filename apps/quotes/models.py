"""
Quote models.

A Quote is a priced proposal to a client. Its status moves only through
apps.quotes.lifecycle; totals are recomputed when items change, never on a
status transition.
"""
from decimal import Decimal
from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from apps.core.models import BaseModel


class QuoteStatus(models.TextChoices):
    """Quote status enum for the approval state machine."""
    DRAFT = 'draft', 'Draft'
    PENDING_APPROVAL = 'pending_approval', 'Pending Approval'
    APPROVED = 'approved', 'Approved'
    REJECTED = 'rejected', 'Rejected'
    SENT = 'sent', 'Sent'


QUOTE_NUMBER_FORMAT = 'Q-{year}-{sequence:03d}'


class QuoteManager(models.Manager):
    """Manager for quote queries with organization scoping."""

    def for_organization(self, organization):
        return self.filter(organization=organization)

    def by_status(self, organization, status):
        return self.filter(organization=organization, status=status)

    def next_quote_number(self, organization, year):
        """
        Next human-readable number for the organization and year.

        The sequence continues from the highest number in use that year;
        gaps left by deleted quotes are not refilled.
        """
        prefix = f"Q-{year}-"
        numbers = self.filter(
            organization=organization,
            quote_number__startswith=prefix,
        ).values_list('quote_number', flat=True)
        highest = 0
        for number in numbers:
            suffix = number[len(prefix):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return QUOTE_NUMBER_FORMAT.format(year=year, sequence=highest + 1)


class Quote(BaseModel):
    """
    Quote header.

    Invariants:
    - subtotal, discount_amount, tax_amount, total_amount are non-negative
    - total_amount = subtotal - discount_amount + tax_amount
    - quote_number is unique within the organization
    """

    organization = models.ForeignKey(
        'organizations.Organization',
        on_delete=models.CASCADE,
        related_name='quotes',
        db_index=True,
        help_text="Organization this quote belongs to"
    )
    quote_number = models.CharField(
        max_length=32,
        help_text="Sequential number, Q-<year>-<NNN>"
    )
    client = models.ForeignKey(
        'catalog.Client',
        on_delete=models.PROTECT,
        related_name='quotes',
        help_text="Client receiving the quote"
    )
    status = models.CharField(
        max_length=20,
        choices=QuoteStatus.choices,
        default=QuoteStatus.DRAFT,
        db_index=True,
        help_text="Lifecycle status"
    )

    subtotal = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0'))],
        help_text="Sum of line subtotals"
    )
    discount_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0'))],
        help_text="Sum of line discounts"
    )
    tax_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0'))],
        help_text="Sum of line taxes"
    )
    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0'))],
        help_text="subtotal - discount + tax"
    )

    valid_until = models.DateField(
        null=True,
        blank=True,
        help_text="Last day the quote can be accepted"
    )
    terms_conditions = models.TextField(blank=True)
    notes = models.TextField(
        blank=True,
        help_text="Free-text notes; rejection reasons are appended here"
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='quotes_created',
        help_text="User who created the quote"
    )
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='quotes_approved',
        help_text="User who approved the quote"
    )
    sent_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the quote was marked sent"
    )

    objects = QuoteManager()

    class Meta:
        db_table = 'quotes'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['organization', 'quote_number'],
                name='unique_quote_number_per_organization',
            ),
        ]
        indexes = [
            models.Index(fields=['organization', 'status'], name='quotes_org_status_idx'),
            models.Index(fields=['organization', 'created_by'], name='quotes_org_creator_idx'),
        ]

    def __str__(self):
        return f"{self.quote_number} ({self.status})"


class QuoteItem(BaseModel):
    """Line item; removed together with its quote."""

    quote = models.ForeignKey(
        Quote,
        on_delete=models.CASCADE,
        related_name='items',
        help_text="Quote this line belongs to"
    )
    product = models.ForeignKey(
        'catalog.Product',
        on_delete=models.PROTECT,
        related_name='quote_items',
        help_text="Quoted product"
    )
    quantity = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
    )
    unit_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0'))],
    )
    discount_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal('0'),
    )
    tax_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
    )
    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="Line total after discount and tax"
    )

    class Meta:
        db_table = 'quote_items'
        ordering = ['created_at']

    def __str__(self):
        return f"{self.quote.quote_number}: {self.quantity} x {self.product.name}"
