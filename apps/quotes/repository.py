"""
Quote repository.

Reads are scoped to an organization; status writes are a compare-and-set
on the status the caller last read, so two actors racing on the same quote
cannot both win.
"""
import logging
from typing import Any, Dict, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils import timezone

from apps.core.exceptions import NotFound, TransitionConflict
from apps.quotes.models import Quote

logger = logging.getLogger(__name__)


class QuoteRepository:
    """ORM-backed quote reads and status writes."""

    def get(self, organization_id, quote_id) -> Quote:
        """
        Load a quote within an organization.

        Raises:
            NotFound: no such quote in that organization
        """
        try:
            return Quote.objects.select_related('client').get(
                id=quote_id,
                organization_id=organization_id,
            )
        except (Quote.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFound(
                "Quote not found",
                details={'quote_id': str(quote_id), 'organization_id': str(organization_id)}
            )

    def write_status(self, quote_id, expected_status, new_status,
                     fields: Optional[Dict[str, Any]] = None) -> Quote:
        """
        Set the status (and side-effect fields) if the quote is still in
        expected_status.

        Raises:
            NotFound: quote no longer exists
            TransitionConflict: status changed since it was read
        """
        updated = Quote.objects.filter(id=quote_id, status=expected_status).update(
            status=new_status,
            updated_at=timezone.now(),
            **(fields or {})
        )
        if updated == 0:
            current = Quote.objects.filter(id=quote_id).values_list('status', flat=True).first()
            if current is None:
                raise NotFound("Quote not found", details={'quote_id': str(quote_id)})
            logger.warning(
                "Quote status changed concurrently",
                extra={
                    'quote_id': str(quote_id),
                    'expected_status': str(expected_status),
                    'current_status': current,
                }
            )
            raise TransitionConflict(
                f"Quote is now '{current}', expected '{expected_status}'",
                details={
                    'quote_id': str(quote_id),
                    'expected_status': str(expected_status),
                    'current_status': current,
                }
            )
        return Quote.objects.select_related('client').get(id=quote_id)
