"""
Action authorizer for quote operations.

can_perform() is the single decision function consulted both before
rendering action controls and before enforcing a lifecycle transition, so
the two can never disagree.
"""
import logging
from typing import Optional, Set

from django.db import models

from apps.core.exceptions import PermissionDeniedError
from apps.core.logging import SecurityLogger
from apps.quotes.models import QuoteStatus
from apps.rbac.capabilities import CapabilitySet, Role

logger = logging.getLogger(__name__)


class QuoteAction(models.TextChoices):
    CREATE = 'create', 'Create'
    EDIT = 'edit', 'Edit'
    SUBMIT = 'submit', 'Submit for approval'
    APPROVE = 'approve', 'Approve'
    REJECT = 'reject', 'Reject'
    SEND = 'send', 'Send'
    DELETE = 'delete', 'Delete'


def _is_creator(quote, actor_id) -> bool:
    creator_id = getattr(quote, 'created_by_id', None)
    if creator_id is None or actor_id is None:
        return False
    return str(creator_id) == str(actor_id)


def can_perform(action, quote, capabilities: Optional[CapabilitySet], actor_id) -> bool:
    """
    Decide whether an actor may perform an action on a quote.

    Args:
        action: QuoteAction (or its value)
        quote: Quote, or any object with ``status`` and ``created_by_id``.
            Ignored for ``create``.
        capabilities: Active CapabilitySet, or None when no organization
            is active (always denies)
        actor_id: Id of the acting user

    Returns:
        True if allowed. Unknown actions are denied.
    """
    if capabilities is None:
        return False
    try:
        action = QuoteAction(action)
    except ValueError:
        return False

    if action == QuoteAction.CREATE:
        return capabilities.can_create_quotes

    if quote is None:
        return False
    status = getattr(quote, 'status', None)

    if action in (QuoteAction.EDIT, QuoteAction.SUBMIT):
        # Managers and admins may work on drafts they did not create.
        return status == QuoteStatus.DRAFT and (
            _is_creator(quote, actor_id) or capabilities.role != Role.AGENT
        )

    if action in (QuoteAction.APPROVE, QuoteAction.REJECT):
        return capabilities.can_approve_quotes and status == QuoteStatus.PENDING_APPROVAL

    if action == QuoteAction.SEND:
        return capabilities.can_send_quotes and status == QuoteStatus.APPROVED

    if action == QuoteAction.DELETE:
        return _is_creator(quote, actor_id) or capabilities.role == Role.ADMIN

    return False


def allowed_actions(quote, capabilities: Optional[CapabilitySet], actor_id) -> Set[QuoteAction]:
    """Every action the actor may perform on the quote (for rendering controls)."""
    return {
        action for action in QuoteAction
        if action != QuoteAction.CREATE and can_perform(action, quote, capabilities, actor_id)
    }


def ensure_can_perform(action, quote, actor):
    """
    Raise PermissionDeniedError unless the actor may perform the action.

    Args:
        action: QuoteAction
        quote: Quote (None for create)
        actor: ActorContext
    """
    if can_perform(action, quote, actor.capabilities, actor.user_id):
        return
    SecurityLogger.log_permission_denied(actor.user_id, actor.organization_id, f"quote:{action}")
    raise PermissionDeniedError(
        f"Not allowed to perform '{action}' on this quote",
        details={
            'action': str(action),
            'quote_id': str(quote.id) if getattr(quote, 'id', None) else None,
            'status': getattr(quote, 'status', None),
        }
    )
