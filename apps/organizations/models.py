"""
Organization models.

An Organization is the tenant boundary: clients, products, quotes and
memberships all belong to exactly one organization.
"""
from django.db import models
from apps.core.models import BaseModel


SETTINGS_DEFAULTS = {
    'default_tax_rate': 0,
    'default_payment_terms': 'Net 30 Days',
    'default_terms_conditions': '',
    'default_quote_expiry_days': 30,
    'currency': 'USD',
    'company_logo_url': None,
}


def default_organization_settings():
    """Default settings bag for a new organization."""
    return dict(SETTINGS_DEFAULTS)


class OrganizationManager(models.Manager):
    """Manager for organization queries."""

    def for_user(self, user):
        """Organizations in which the user holds an active membership."""
        return self.filter(
            memberships__user=user,
            memberships__status='active',
        ).distinct()


class Organization(BaseModel):
    """
    Organization (tenant) record.

    Settings are a JSON bag seeded from SETTINGS_DEFAULTS; only admins of
    the organization may change them (see organizations.services).
    """

    name = models.CharField(
        max_length=255,
        help_text="Organization name"
    )
    settings = models.JSONField(
        default=default_organization_settings,
        blank=True,
        help_text="Tax rate, payment terms, quote validity window, logo reference"
    )

    objects = OrganizationManager()

    class Meta:
        db_table = 'organizations'
        ordering = ['name']

    def __str__(self):
        return self.name

    def get_setting(self, key):
        """Return a setting, falling back to the default for missing keys."""
        return self.settings.get(key, SETTINGS_DEFAULTS.get(key))

    @property
    def default_tax_rate(self):
        return self.get_setting('default_tax_rate')

    @property
    def default_quote_expiry_days(self):
        return self.get_setting('default_quote_expiry_days')
