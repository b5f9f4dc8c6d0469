# Initial schema for products and clients

import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('organizations', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Product',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('sku', models.CharField(help_text='Stock Keeping Unit (unique per organization)', max_length=100)),
                ('name', models.CharField(db_index=True, help_text='Product name', max_length=255)),
                ('description', models.TextField(blank=True, help_text='Product description')),
                ('price', models.DecimalField(decimal_places=2, help_text='Unit price', max_digits=12, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('tax_rate', models.DecimalField(decimal_places=2, default=Decimal('0'), help_text='Tax rate in percent', max_digits=5, validators=[django.core.validators.MinValueValidator(Decimal('0')), django.core.validators.MaxValueValidator(Decimal('100'))])),
                ('category', models.CharField(blank=True, help_text='Free-form category', max_length=100)),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text='Whether product can be added to new quotes')),
                ('organization', models.ForeignKey(help_text='Organization this product belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='products', to='organizations.organization')),
            ],
            options={
                'db_table': 'products',
                'ordering': ['name'],
                'indexes': [
                    models.Index(fields=['organization', 'is_active'], name='products_org_active_idx'),
                    models.Index(fields=['organization', 'category'], name='products_org_category_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('organization', 'sku'), name='unique_product_sku_per_organization'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Client',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('name', models.CharField(help_text='Client company name', max_length=255)),
                ('contact_person', models.CharField(blank=True, help_text='Primary contact', max_length=255)),
                ('email', models.EmailField(blank=True, help_text='Contact email', max_length=254)),
                ('phone', models.CharField(blank=True, help_text='Contact phone', max_length=50)),
                ('address', models.TextField(blank=True, help_text='Postal address')),
                ('payment_terms', models.CharField(blank=True, help_text='Payment terms, defaults to the organization setting', max_length=100)),
                ('organization', models.ForeignKey(help_text='Organization this client belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='clients', to='organizations.organization')),
            ],
            options={
                'db_table': 'clients',
                'ordering': ['name'],
                'indexes': [models.Index(fields=['organization', 'name'], name='clients_org_name_idx')],
            },
        ),
    ]
