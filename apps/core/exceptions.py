"""
Exception taxonomy for QuoteDesk.

Every failure the session store, organization switch and quote lifecycle
surface to callers is a QuoteDeskException subclass carrying a message and
a details dict for logging.
"""


class QuoteDeskException(Exception):
    """Base exception for QuoteDesk-specific errors."""

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class InvalidCredentials(QuoteDeskException):
    """Raised when email/password authentication fails."""
    status_code = 401


class BackendUnavailable(QuoteDeskException):
    """Raised when the backend cannot be reached or fails unexpectedly."""
    status_code = 503


class NotConfigured(QuoteDeskException):
    """Raised when no backend connection is configured at all."""
    status_code = 503


class OrganizationUnavailable(QuoteDeskException):
    """Raised when an organization or its active membership cannot be loaded."""
    status_code = 403


class IllegalTransition(QuoteDeskException):
    """Raised when a quote status transition is not allowed."""
    status_code = 409


class TransitionConflict(IllegalTransition):
    """Raised when a quote changed status between read and write."""
    pass


class CorruptedSession(QuoteDeskException):
    """
    Authenticated identity without an application profile.

    Handled inside the session store by forcing sign-out; never surfaced
    to callers.
    """
    pass


class NotFound(QuoteDeskException):
    """Raised by backends when a requested record does not exist."""
    status_code = 404


class AuthenticationError(QuoteDeskException):
    """Raised when an operation requires a signed-in identity."""
    status_code = 401


class PermissionDeniedError(QuoteDeskException):
    """Raised when the actor lacks the capability for an action."""
    status_code = 403


class ValidationError(QuoteDeskException):
    """Raised when input validation fails."""
    status_code = 400
