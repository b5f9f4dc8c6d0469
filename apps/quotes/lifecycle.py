"""
Quote lifecycle state machine.

    draft -> pending_approval -> approved -> sent
                     \\-> rejected

Planning a transition is pure: plan_transition() validates the trigger
against the current status and the action authorizer, and returns the
fields to write. Writing is the repository's job.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from django.db import models
from django.utils import timezone

from apps.core.exceptions import IllegalTransition
from apps.core.logging import SecurityLogger
from apps.quotes.models import QuoteStatus
from apps.rbac.authorizer import QuoteAction, can_perform
from apps.rbac.capabilities import Role

REJECTION_PREFIX = 'Rejected: '


class Trigger(models.TextChoices):
    SUBMIT = 'submit', 'Submit for approval'
    APPROVE = 'approve', 'Approve'
    REJECT = 'reject', 'Reject'
    MARK_SENT = 'mark_sent', 'Mark sent'


# trigger -> (from status, to status, authorizer action)
TRANSITIONS = {
    Trigger.SUBMIT: (QuoteStatus.DRAFT, QuoteStatus.PENDING_APPROVAL, QuoteAction.SUBMIT),
    Trigger.APPROVE: (QuoteStatus.PENDING_APPROVAL, QuoteStatus.APPROVED, QuoteAction.APPROVE),
    Trigger.REJECT: (QuoteStatus.PENDING_APPROVAL, QuoteStatus.REJECTED, QuoteAction.REJECT),
    Trigger.MARK_SENT: (QuoteStatus.APPROVED, QuoteStatus.SENT, QuoteAction.SEND),
}


@dataclass(frozen=True)
class TransitionPlan:
    """Validated transition: the status change plus side-effect fields."""

    trigger: Trigger
    from_status: QuoteStatus
    to_status: QuoteStatus
    fields: Dict[str, Any]


def initial_status_for(role) -> QuoteStatus:
    """
    Status a newly created quote starts in.

    Agents start in draft; managers and admins skip straight to approved.
    """
    if Role.from_value(role) == Role.AGENT:
        return QuoteStatus.DRAFT
    return QuoteStatus.APPROVED


def append_rejection_reason(notes: Optional[str], reason: Optional[str]) -> str:
    """
    Append "Rejected: <reason>" to notes, separated by a blank line.

    A blank reason leaves the notes unchanged. Earlier rejection entries
    are kept, so a quote rejected twice carries both reasons.
    """
    notes = notes or ''
    reason = (reason or '').strip()
    if not reason:
        return notes
    entry = f"{REJECTION_PREFIX}{reason}"
    if not notes:
        return entry
    return f"{notes}\n\n{entry}"


def _illegal(quote, trigger, actor, message):
    SecurityLogger.log_illegal_transition(actor.user_id, getattr(quote, 'id', None), quote.status, str(trigger))
    return IllegalTransition(
        message,
        details={
            'quote_id': str(quote.id) if getattr(quote, 'id', None) else None,
            'status': quote.status,
            'trigger': str(trigger),
        }
    )


def plan_transition(quote, trigger, actor, reason: Optional[str] = None,
                    now: Optional[datetime] = None) -> TransitionPlan:
    """
    Validate a transition and compute the fields it writes.

    Args:
        quote: Quote as last read
        trigger: Trigger (or its value)
        actor: ActorContext of the acting user
        reason: Rejection reason (reject only)
        now: Timestamp for mark_sent, defaults to timezone.now()

    Returns:
        TransitionPlan

    Raises:
        IllegalTransition: unknown trigger, wrong source status, or the
            actor fails the authorizer check
    """
    try:
        trigger = Trigger(trigger)
    except ValueError:
        raise _illegal(quote, trigger, actor, f"Unknown trigger '{trigger}'")

    from_status, to_status, action = TRANSITIONS[trigger]

    if quote.status != from_status:
        raise _illegal(
            quote, trigger, actor,
            f"Cannot {trigger.label.lower()} a quote in status '{quote.status}'"
        )

    if not can_perform(action, quote, actor.capabilities, actor.user_id):
        raise _illegal(
            quote, trigger, actor,
            f"Not allowed to {trigger.label.lower()} this quote"
        )

    fields = {}
    if trigger == Trigger.APPROVE:
        fields['approved_by_id'] = actor.user_id
    elif trigger == Trigger.REJECT:
        notes = append_rejection_reason(quote.notes, reason)
        if notes != (quote.notes or ''):
            fields['notes'] = notes
    elif trigger == Trigger.MARK_SENT:
        fields['sent_at'] = now or timezone.now()

    return TransitionPlan(
        trigger=trigger,
        from_status=from_status,
        to_status=to_status,
        fields=fields,
    )
