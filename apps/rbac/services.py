"""
Authentication and audit services.

Implements:
- AuthService: JWT session tokens, login, registration, token revocation,
  profile and password changes
- AuditService: audit log reads gated by can_view_audit_logs
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Any, Dict, Optional

import jwt
from django.conf import settings
from django.contrib.auth import authenticate
from django.contrib.auth.password_validation import validate_password
from django.core.cache import cache
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction

from apps.core.exceptions import InvalidCredentials, NotFound, PermissionDeniedError, ValidationError
from apps.core.logging import SecurityLogger
from apps.rbac.models import AuditLog, User

logger = logging.getLogger(__name__)

REVOKED_TOKEN_KEY = 'revoked_session:{jti}'


class AuthService:
    """
    Service for authentication operations: JWT, login, registration.
    """

    @classmethod
    def generate_jwt(cls, user: User) -> str:
        """
        Generate JWT token for a user.

        Each token carries a unique ``jti`` so it can be revoked on
        sign-out.
        """
        now = datetime.now(dt_timezone.utc)
        payload = {
            'user_id': str(user.id),
            'email': user.email,
            'jti': uuid.uuid4().hex,
            'exp': now + timedelta(hours=getattr(settings, 'JWT_EXPIRATION_HOURS', 24)),
            'iat': now,
        }

        return jwt.encode(
            payload,
            settings.JWT_SECRET_KEY,
            algorithm=getattr(settings, 'JWT_ALGORITHM', 'HS256')
        )

    @classmethod
    def validate_jwt(cls, token: str) -> Optional[Dict[str, Any]]:
        """
        Validate JWT token and return payload.

        Returns:
            Decoded payload dict, or None if invalid, expired or revoked
        """
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')]
            )
        except jwt.ExpiredSignatureError:
            logger.info("Session token expired")
            return None
        except jwt.InvalidTokenError:
            logger.warning("Invalid session token")
            return None

        jti = payload.get('jti')
        if jti and cache.get(REVOKED_TOKEN_KEY.format(jti=jti)):
            return None
        return payload

    @classmethod
    def revoke_jwt(cls, token: str) -> bool:
        """
        Revoke a token until its natural expiry.

        Returns:
            True if a valid token was revoked
        """
        payload = cls.validate_jwt(token)
        if not payload or not payload.get('jti'):
            return False
        remaining = int(payload['exp'] - datetime.now(dt_timezone.utc).timestamp())
        cache.set(REVOKED_TOKEN_KEY.format(jti=payload['jti']), True, timeout=max(remaining, 1))
        return True

    @classmethod
    def login(cls, email: str, password: str) -> Dict[str, Any]:
        """
        Authenticate user and return JWT token.

        Credentials are checked through the configured Django
        authentication backends (EmailAuthBackend).

        Returns:
            Dict with user and token

        Raises:
            InvalidCredentials: unknown email, wrong password or inactive user
        """
        email = User.objects.normalize_email(email)
        user = authenticate(None, username=email, password=password)
        if user is None:
            SecurityLogger.log_failed_login(email, 'invalid_credentials')
            raise InvalidCredentials("Invalid email or password")

        user.update_last_login()
        return {
            'user': user,
            'token': cls.generate_jwt(user),
        }

    @classmethod
    @transaction.atomic
    def register_user(cls, email: str, password: str, full_name: str = '') -> User:
        """
        Register a new user.

        Raises:
            ValidationError: missing email, short password or email in use
        """
        email = User.objects.normalize_email(email)
        if not email or '@' not in email:
            raise ValidationError("A valid email address is required")
        try:
            validate_password(password or '')
        except DjangoValidationError as e:
            raise ValidationError(" ".join(e.messages), details={'field': 'password'})
        if User.objects.filter(email=email).exists():
            raise ValidationError("Email already registered", details={'email': email})

        try:
            with transaction.atomic():
                user = User.objects.create_user(
                    email=email,
                    password=password,
                    full_name=(full_name or '').strip(),
                )
        except IntegrityError:
            raise ValidationError("Email already registered", details={'email': email})

        AuditLog.log_action(
            action='user_registered',
            user=user,
            target_type='User',
            target_id=user.id,
        )
        logger.info("User registered", extra={'user_id': str(user.id)})
        return user

    @classmethod
    @transaction.atomic
    def update_profile(cls, user_id, full_name: Optional[str] = None,
                       email: Optional[str] = None) -> User:
        """
        Change the display name and/or email of an identity.

        Raises:
            NotFound: no active user with that id
            ValidationError: invalid email or email already in use
        """
        user = cls._get_active_user(user_id)
        diff = {}

        if full_name is not None:
            full_name = full_name.strip()
            if full_name != user.full_name:
                diff['full_name'] = {'old': user.full_name, 'new': full_name}
                user.full_name = full_name

        if email is not None:
            email = User.objects.normalize_email(email.strip())
            if not email or '@' not in email:
                raise ValidationError("A valid email address is required", details={'field': 'email'})
            if email != user.email:
                if User.objects.filter(email=email).exclude(id=user.id).exists():
                    raise ValidationError("Email already registered", details={'email': email})
                diff['email'] = {'old': user.email, 'new': email}
                user.email = email

        if not diff:
            return user

        try:
            with transaction.atomic():
                user.save(update_fields=[*diff, 'updated_at'])
        except IntegrityError:
            raise ValidationError("Email already registered", details={'email': user.email})

        AuditLog.log_action(
            action='profile_updated',
            user=user,
            target_type='User',
            target_id=user.id,
            diff=diff,
        )
        logger.info("Profile updated", extra={'user_id': str(user.id), 'fields': sorted(diff)})
        return user

    @classmethod
    @transaction.atomic
    def change_password(cls, user_id, old_password: str, new_password: str) -> User:
        """
        Replace the password after checking the current one.

        Raises:
            NotFound: no active user with that id
            InvalidCredentials: current password is wrong
            ValidationError: new password fails the password validators
        """
        user = cls._get_active_user(user_id)
        if not user.check_password(old_password or ''):
            SecurityLogger.log_failed_login(user.email, 'wrong_current_password')
            raise InvalidCredentials("Current password is incorrect")
        try:
            validate_password(new_password or '')
        except DjangoValidationError as e:
            raise ValidationError(" ".join(e.messages), details={'field': 'new_password'})

        user.set_password(new_password)
        user.save(update_fields=['password_hash', 'updated_at'])

        AuditLog.log_action(
            action='password_changed',
            user=user,
            target_type='User',
            target_id=user.id,
        )
        logger.info("Password changed", extra={'user_id': str(user.id)})
        return user

    @staticmethod
    def _get_active_user(user_id) -> User:
        try:
            user = User.objects.filter(id=user_id, is_active=True).first()
        except (DjangoValidationError, ValueError):
            user = None
        if user is None:
            raise NotFound("User not found", details={'user_id': str(user_id)})
        return user


class AuditService:
    """Read access to the audit trail of the actor's organization."""

    @staticmethod
    def list_entries(actor, action: Optional[str] = None, target_type: Optional[str] = None,
                     target_id=None):
        if not actor.capabilities.can_view_audit_logs:
            SecurityLogger.log_permission_denied(actor.user_id, actor.organization_id, 'view_audit_logs')
            raise PermissionDeniedError("Not allowed to view audit logs")

        entries = AuditLog.objects.for_organization(actor.organization_id).select_related('user')
        if action:
            entries = entries.filter(action=action)
        if target_type:
            entries = entries.filter(target_type=target_type)
        if target_id:
            entries = entries.filter(target_id=target_id)
        return entries
