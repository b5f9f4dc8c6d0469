# Initial schema for quotes and quote items

import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('organizations', '0001_initial'),
        ('catalog', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Quote',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('quote_number', models.CharField(help_text='Sequential number, Q-<year>-<NNN>', max_length=32)),
                ('status', models.CharField(choices=[('draft', 'Draft'), ('pending_approval', 'Pending Approval'), ('approved', 'Approved'), ('rejected', 'Rejected'), ('sent', 'Sent')], db_index=True, default='draft', help_text='Lifecycle status', max_length=20)),
                ('subtotal', models.DecimalField(decimal_places=2, default=Decimal('0.00'), help_text='Sum of line subtotals', max_digits=12, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('discount_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), help_text='Sum of line discounts', max_digits=12, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('tax_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), help_text='Sum of line taxes', max_digits=12, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('total_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), help_text='subtotal - discount + tax', max_digits=12, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('valid_until', models.DateField(blank=True, help_text='Last day the quote can be accepted', null=True)),
                ('terms_conditions', models.TextField(blank=True)),
                ('notes', models.TextField(blank=True, help_text='Free-text notes; rejection reasons are appended here')),
                ('sent_at', models.DateTimeField(blank=True, help_text='When the quote was marked sent', null=True)),
                ('organization', models.ForeignKey(help_text='Organization this quote belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='quotes', to='organizations.organization')),
                ('client', models.ForeignKey(help_text='Client receiving the quote', on_delete=django.db.models.deletion.PROTECT, related_name='quotes', to='catalog.client')),
                ('created_by', models.ForeignKey(help_text='User who created the quote', on_delete=django.db.models.deletion.PROTECT, related_name='quotes_created', to=settings.AUTH_USER_MODEL)),
                ('approved_by', models.ForeignKey(blank=True, help_text='User who approved the quote', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='quotes_approved', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'quotes',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['organization', 'status'], name='quotes_org_status_idx'),
                    models.Index(fields=['organization', 'created_by'], name='quotes_org_creator_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('organization', 'quote_number'), name='unique_quote_number_per_organization'),
                ],
            },
        ),
        migrations.CreateModel(
            name='QuoteItem',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('quantity', models.DecimalField(decimal_places=2, max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('unit_price', models.DecimalField(decimal_places=2, max_digits=12, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('discount_percent', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=5)),
                ('tax_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('total_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), help_text='Line total after discount and tax', max_digits=12)),
                ('quote', models.ForeignKey(help_text='Quote this line belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='items', to='quotes.quote')),
                ('product', models.ForeignKey(help_text='Quoted product', on_delete=django.db.models.deletion.PROTECT, related_name='quote_items', to='catalog.product')),
            ],
            options={
                'db_table': 'quote_items',
                'ordering': ['created_at'],
            },
        ),
    ]
