from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Perform startup validation checks when Django initializes.

        Disabled unless STARTUP_VALIDATION is set so that management
        commands and the test suite can run with development defaults.
        """
        if not getattr(settings, 'STARTUP_VALIDATION', False):
            return

        self._validate_jwt_configuration()
        self._validate_session_backend()

        logger.info("All startup validations passed")

    def _validate_jwt_configuration(self):
        """Validate JWT secret key configuration."""
        jwt_secret = getattr(settings, 'JWT_SECRET_KEY', None)
        secret_key = getattr(settings, 'SECRET_KEY', None)

        if not jwt_secret:
            raise ImproperlyConfigured(
                "JWT_SECRET_KEY must be set in environment variables. "
                "Generate a strong key with: "
                "python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )

        if len(jwt_secret) < 32:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY must be at least 32 characters long. "
                f"Current length: {len(jwt_secret)}."
            )

        if jwt_secret == secret_key:
            raise ImproperlyConfigured(
                "JWT_SECRET_KEY must be different from SECRET_KEY."
            )

    def _validate_session_backend(self):
        """
        Warn when no session backend is configured.

        This is not fatal: the session store degrades to its
        "setup required" mode instead.
        """
        backend_path = getattr(settings, 'QUOTEDESK_SESSION_BACKEND', None)
        if not backend_path:
            logger.warning(
                "QUOTEDESK_SESSION_BACKEND is not set; sessions will start in setup-required mode"
            )
