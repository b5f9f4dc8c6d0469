"""
Structured logging helpers.

- PIIMasker masks emails, tokens and passwords before they reach a handler.
- JSONFormatter renders records as JSON lines for log aggregation.
- PIIMaskingFilter applies masking to plain-text handlers.
- SecurityLogger records authentication and authorization events and
  forwards the critical ones to Sentry.
"""
import json
import logging
import re
import traceback
from datetime import datetime
from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """
    Utility class to mask sensitive PII data in logs.
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b')
    SECRET_PATTERN = re.compile(r'(token|secret|password|auth)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)', re.IGNORECASE)
    JWT_PATTERN = re.compile(r'eyJ[a-zA-Z0-9_\-]+\.eyJ[a-zA-Z0-9_\-]+\.[a-zA-Z0-9_\-]+')

    SENSITIVE_FIELDS = {
        'password', 'password_hash',
        'token', 'access_token', 'session_token',
        'secret', 'secret_key',
    }

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses in text, keeping the first character and domain."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            if len(username) > 1:
                username = username[0] + '*' * (len(username) - 1)
            return f"{username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        text = cls.JWT_PATTERN.sub('[REDACTED_JWT]', text)
        text = cls.SECRET_PATTERN.sub(r'\1: ********', text)
        text = cls.mask_email(text)
        return text

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if key.lower() in cls.SENSITIVE_FIELDS:
                masked[key] = '********' if value else value
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, str):
                masked[key] = cls.mask_text(value)
            else:
                masked[key] = value
        return masked


_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
    'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'taskName',
])


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Includes organization_id and user_id from extra fields if available.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.utcnow().isoformat() + 'Z',
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            if isinstance(value, dict):
                value = PIIMasker.mask_dict(value)
            elif isinstance(value, str):
                value = PIIMasker.mask_text(value)
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class PIIMaskingFilter(logging.Filter):
    """Mask PII in the rendered message of plain-text log records."""

    def filter(self, record):
        record.msg = PIIMasker.mask_text(record.getMessage())
        record.args = None
        return True


class SecurityLogger:
    """
    Centralized security event logging.

    Every event is written to the 'security' logger with structured
    context; critical events are also sent to Sentry for alerting.
    """

    CRITICAL_EVENTS = {
        'corrupted_session',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Example:
            >>> SecurityLogger.log_event(
            ...     'illegal_transition',
            ...     user_id='...',
            ...     quote_id='...',
            ... )
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'event_timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(
            f"Security event: {event_type}",
            extra=log_data
        )

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
            )

    @staticmethod
    def log_failed_login(email: str, reason: str = None):
        """Log a failed sign-in attempt."""
        SecurityLogger.log_event(
            'failed_login',
            level='warning',
            email=email,
            reason=reason
        )

    @staticmethod
    def log_corrupted_session(user_id: str):
        """
        Log an authenticated identity that has no application profile.

        The session store forces a sign-out right after this is recorded.
        """
        SecurityLogger.log_event(
            'corrupted_session',
            level='error',
            user_id=user_id
        )

    @staticmethod
    def log_permission_denied(user_id, organization_id, action: str):
        """Log a denied capability check."""
        SecurityLogger.log_event(
            'permission_denied',
            level='warning',
            user_id=str(user_id) if user_id else None,
            organization_id=str(organization_id) if organization_id else None,
            action=action
        )

    @staticmethod
    def log_illegal_transition(user_id, quote_id, status: str, trigger: str):
        """Log a rejected quote status transition."""
        SecurityLogger.log_event(
            'illegal_transition',
            level='info',
            user_id=str(user_id) if user_id else None,
            quote_id=str(quote_id) if quote_id else None,
            status=status,
            trigger=trigger
        )

    @staticmethod
    def log_sign_out_revoke_failed(user_id, error: str):
        """Log a remote session revoke failure during sign-out."""
        SecurityLogger.log_event(
            'sign_out_revoke_failed',
            level='warning',
            user_id=str(user_id) if user_id else None,
            error=error
        )
