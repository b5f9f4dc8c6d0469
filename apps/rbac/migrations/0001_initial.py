# Initial schema for users, memberships and the audit log

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('organizations', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('email', models.EmailField(db_index=True, help_text="Sign-in email, unique across organizations", max_length=254, unique=True)),
                ('full_name', models.CharField(blank=True, help_text='Display name', max_length=200)),
                ('password_hash', models.CharField(db_column='password_hash', help_text="Django password hash", max_length=255)),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text="Deactivated identities cannot sign in")),
                ('last_login_at', models.DateTimeField(blank=True, help_text="Most recent successful sign-in", null=True)),
            ],
            options={
                'db_table': 'users',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['is_active', 'created_at'], name='users_active_created_idx')],
            },
        ),
        migrations.CreateModel(
            name='Membership',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('role', models.CharField(choices=[('admin', 'Administrator'), ('manager', 'Manager'), ('agent', 'Sales Agent')], default='agent', help_text='Role within the organization', max_length=20)),
                ('status', models.CharField(choices=[('active', 'Active'), ('pending', 'Pending'), ('inactive', 'Inactive')], db_index=True, default='active', help_text='Membership status', max_length=20)),
                ('joined_at', models.DateTimeField(default=django.utils.timezone.now, help_text='When the user joined the organization')),
                ('organization', models.ForeignKey(help_text='Organization this membership belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='memberships', to='organizations.organization')),
                ('user', models.ForeignKey(help_text="Member identity", on_delete=django.db.models.deletion.CASCADE, related_name='memberships', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'memberships',
                'ordering': ['joined_at'],
                'indexes': [
                    models.Index(fields=['user', 'status'], name='memberships_user_status_idx'),
                    models.Index(fields=['organization', 'role'], name='memberships_org_role_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('user', 'organization'), name='unique_membership_per_organization'),
                ],
            },
        ),
        migrations.CreateModel(
            name='AuditLog',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('action', models.CharField(db_index=True, help_text="Action performed (e.g., 'quote_approved', 'member_role_changed')", max_length=100)),
                ('target_type', models.CharField(db_index=True, help_text="Type of target entity (e.g., 'Quote', 'Membership')", max_length=50)),
                ('target_id', models.UUIDField(blank=True, db_index=True, help_text="Primary key of the affected record", null=True)),
                ('diff', models.JSONField(blank=True, default=dict, help_text="Field values before and after the change")),
                ('metadata', models.JSONField(blank=True, default=dict, help_text="Free-form context for the entry")),
                ('organization', models.ForeignKey(blank=True, help_text='Organization this action belongs to', null=True, on_delete=django.db.models.deletion.CASCADE, related_name='audit_logs', to='organizations.organization')),
                ('user', models.ForeignKey(blank=True, help_text="Acting identity; empty for system writes", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='audit_logs', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'audit_logs',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['organization', 'created_at'], name='audit_org_created_idx'),
                    models.Index(fields=['target_type', 'target_id'], name='audit_target_idx'),
                    models.Index(fields=['organization', 'action', 'created_at'], name='audit_org_action_idx'),
                ],
            },
        ),
    ]
