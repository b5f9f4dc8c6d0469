"""
Quote services.

Implements:
- QuoteService: create, edit, delete and reopen quotes
- QuoteWorkflow: lifecycle transitions (submit, approve, reject, mark sent)

Every operation takes the ActorContext of the signed-in user and delegates
its permission check to the action authorizer.
"""
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from asgiref.sync import sync_to_async
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.catalog.models import Client, Product
from apps.core.exceptions import (
    IllegalTransition, NotFound, PermissionDeniedError, ValidationError,
)
from apps.organizations.models import Organization
from apps.quotes.lifecycle import Trigger, initial_status_for, plan_transition
from apps.quotes.models import Quote, QuoteItem, QuoteStatus
from apps.quotes.repository import QuoteRepository
from apps.quotes.totals import calculate_line, calculate_totals
from apps.rbac.authorizer import QuoteAction, ensure_can_perform
from apps.rbac.models import AuditLog

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('client', 'valid_until', 'terms_conditions', 'notes')


class QuoteService:
    """
    Service for quote editing operations.

    Status changes other than creation and reopening go through
    QuoteWorkflow.
    """

    repository = QuoteRepository()

    @classmethod
    def get_quote(cls, actor, quote_id) -> Quote:
        return cls.repository.get(actor.organization_id, quote_id)

    @classmethod
    def list_quotes(cls, actor, status: Optional[str] = None):
        """Quotes of the actor's organization, optionally filtered by status."""
        quotes = Quote.objects.filter(organization_id=actor.organization_id).select_related('client')
        if status:
            quotes = quotes.filter(status=status)
        return quotes

    @staticmethod
    def _resolve_client(actor, client) -> Client:
        client_id = getattr(client, 'id', client)
        try:
            return Client.objects.get(id=client_id, organization_id=actor.organization_id)
        except (Client.DoesNotExist, DjangoValidationError, ValueError):
            raise ValidationError(
                "Client not found in this organization",
                details={'client_id': str(client_id)}
            )

    @staticmethod
    def _build_lines(actor, items: List[Dict[str, Any]]):
        """
        Validate line input and compute per-line totals.

        Each item is a dict with ``product`` (instance or id), ``quantity``
        and optionally ``unit_price`` (defaults to the product price) and
        ``discount_percent``.
        """
        if not items:
            raise ValidationError("A quote needs at least one item")

        product_ids = [str(getattr(item['product'], 'id', item['product'])) for item in items]
        products = {
            str(product.id): product
            for product in Product.objects.filter(
                organization_id=actor.organization_id,
                id__in=product_ids,
            )
        }

        lines = []
        for product_id, item in zip(product_ids, items):
            product = products.get(product_id)
            if product is None:
                raise ValidationError(
                    "Product not found in this organization",
                    details={'product_id': product_id}
                )
            if not product.is_active:
                raise ValidationError(
                    "Product is inactive",
                    details={'product_id': product_id, 'sku': product.sku}
                )
            unit_price = item.get('unit_price')
            if unit_price is None:
                unit_price = product.price
            discount_percent = item.get('discount_percent') or Decimal('0')
            try:
                totals = calculate_line(
                    item['quantity'], unit_price, discount_percent, product.tax_rate
                )
            except (ValueError, ArithmeticError) as e:
                raise ValidationError(str(e), details={'product_id': product_id})
            lines.append((product, Decimal(str(item['quantity'])), Decimal(str(unit_price)),
                          Decimal(str(discount_percent)), totals))
        return lines

    @staticmethod
    def _write_items(quote, lines):
        QuoteItem.objects.bulk_create([
            QuoteItem(
                quote=quote,
                product=product,
                quantity=quantity,
                unit_price=unit_price,
                discount_percent=discount_percent,
                tax_amount=totals.tax,
                total_amount=totals.total,
            )
            for product, quantity, unit_price, discount_percent, totals in lines
        ])

    @staticmethod
    def _insert_numbered(organization, year, fields) -> Quote:
        """
        Insert a quote under the next free number for the organization.

        A concurrent create that took the same number makes the insert fail
        on the unique constraint; the number is recomputed once.
        """
        for attempt in (1, 2):
            number = Quote.objects.next_quote_number(organization, year)
            try:
                with transaction.atomic():
                    return Quote.objects.create(quote_number=number, **fields)
            except IntegrityError:
                if attempt == 2:
                    raise
                logger.warning(
                    "Quote number taken concurrently, retrying",
                    extra={'organization_id': str(organization.id), 'quote_number': number}
                )

    @classmethod
    @transaction.atomic
    def create_quote(cls, actor, client, items: List[Dict[str, Any]], valid_until=None,
                     terms_conditions: Optional[str] = None, notes: str = '') -> Quote:
        """
        Create a quote with its items.

        Agents create drafts; managers and admins create approved quotes
        and are recorded as the approver.

        Raises:
            PermissionDeniedError: actor cannot create quotes
            ValidationError: no items, or client/product outside the organization
        """
        ensure_can_perform(QuoteAction.CREATE, None, actor)

        client = cls._resolve_client(actor, client)
        lines = cls._build_lines(actor, items)
        totals = calculate_totals(line[-1] for line in lines)

        organization = Organization.objects.select_for_update().get(id=actor.organization_id)
        today = timezone.localdate()
        if valid_until is None:
            valid_until = today + timedelta(days=int(organization.default_quote_expiry_days))
        if terms_conditions is None:
            terms_conditions = organization.get_setting('default_terms_conditions') or ''

        status = initial_status_for(actor.role)
        fields = dict(
            organization=organization,
            client=client,
            status=status,
            valid_until=valid_until,
            terms_conditions=terms_conditions,
            notes=notes or '',
            created_by_id=actor.user_id,
            approved_by_id=actor.user_id if status == QuoteStatus.APPROVED else None,
            **totals.as_fields()
        )
        quote = cls._insert_numbered(organization, today.year, fields)
        cls._write_items(quote, lines)

        AuditLog.log_action(
            action='quote_created',
            user=actor.user_id,
            organization=actor.organization_id,
            target_type='Quote',
            target_id=quote.id,
            metadata={
                'quote_number': quote.quote_number,
                'status': quote.status,
                'total_amount': str(quote.total_amount),
            }
        )
        logger.info(
            "Quote created",
            extra={
                'quote_id': str(quote.id),
                'organization_id': str(actor.organization_id),
                'user_id': str(actor.user_id),
                'status': quote.status,
            }
        )
        return quote

    @staticmethod
    def _lock(actor, quote) -> Quote:
        """Re-read the quote row under a lock, scoped to the actor's organization."""
        quote_id = getattr(quote, 'id', quote)
        try:
            return Quote.objects.select_for_update().get(
                id=quote_id,
                organization_id=actor.organization_id,
            )
        except (Quote.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFound("Quote not found", details={'quote_id': str(quote_id)})

    @classmethod
    @transaction.atomic
    def update_quote(cls, actor, quote: Quote, items: Optional[List[Dict[str, Any]]] = None,
                     **changes) -> Quote:
        """
        Edit a draft quote.

        ``items`` replaces all line items and recomputes totals. Other
        keyword arguments may set client, valid_until, terms_conditions and
        notes. The permission check runs against the current row, and only
        the edited columns and totals are written; status, approver and sent
        timestamp are left alone.
        """
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(
                "Unknown quote fields",
                details={'fields': sorted(unknown)}
            )

        current = cls._lock(actor, quote)
        ensure_can_perform(QuoteAction.EDIT, current, actor)

        diff = {}
        update_fields = ['updated_at']
        if 'client' in changes:
            client = cls._resolve_client(actor, changes.pop('client'))
            if client.id != current.client_id:
                diff['client'] = {'old': str(current.client_id), 'new': str(client.id)}
                current.client = client
                update_fields.append('client')
        for field, value in changes.items():
            old = getattr(current, field)
            if old != value:
                diff[field] = {'old': str(old), 'new': str(value)}
                setattr(current, field, value)
                update_fields.append(field)

        if items is not None:
            lines = cls._build_lines(actor, items)
            totals = calculate_totals(line[-1] for line in lines)
            current.items.all().delete()
            cls._write_items(current, lines)
            for field, value in totals.as_fields().items():
                old = getattr(current, field)
                if old != value:
                    diff[field] = {'old': str(old), 'new': str(value)}
                setattr(current, field, value)
                update_fields.append(field)

        current.save(update_fields=update_fields)

        AuditLog.log_action(
            action='quote_updated',
            user=actor.user_id,
            organization=actor.organization_id,
            target_type='Quote',
            target_id=current.id,
            diff=diff,
        )
        return current

    @classmethod
    @transaction.atomic
    def delete_quote(cls, actor, quote: Quote):
        """Delete a quote and its items (creator or admin only)."""
        ensure_can_perform(QuoteAction.DELETE, quote, actor)

        quote_id = quote.id
        AuditLog.log_action(
            action='quote_deleted',
            user=actor.user_id,
            organization=actor.organization_id,
            target_type='Quote',
            target_id=quote_id,
            metadata={'quote_number': quote.quote_number, 'status': quote.status}
        )
        quote.delete()
        logger.info("Quote deleted", extra={'quote_id': str(quote_id)})

    @classmethod
    @transaction.atomic
    def reopen_as_draft(cls, actor, quote: Quote) -> Quote:
        """
        Return a rejected quote to draft so its creator can rework it.

        Raises:
            PermissionDeniedError: actor is not the creator
            IllegalTransition: quote is not rejected
        """
        current = cls._lock(actor, quote)
        if str(current.created_by_id) != str(actor.user_id):
            raise PermissionDeniedError(
                "Only the creator can reopen a rejected quote",
                details={'quote_id': str(current.id)}
            )
        if current.status != QuoteStatus.REJECTED:
            raise IllegalTransition(
                f"Cannot reopen a quote in status '{current.status}'",
                details={'quote_id': str(current.id), 'status': current.status}
            )

        updated = cls.repository.write_status(current.id, QuoteStatus.REJECTED, QuoteStatus.DRAFT)
        AuditLog.log_action(
            action='quote_reopened',
            user=actor.user_id,
            organization=actor.organization_id,
            target_type='Quote',
            target_id=current.id,
            diff={'status': {'old': QuoteStatus.REJECTED.value, 'new': QuoteStatus.DRAFT.value}}
        )
        return updated


class QuoteWorkflow:
    """
    Drives quotes through the approval lifecycle.

    transition() loads the quote in the actor's organization, plans the
    transition, writes it with a compare-and-set on the status it read and
    records an audit entry. Nothing is written when planning fails.
    """

    def __init__(self, repository: Optional[QuoteRepository] = None):
        self.repository = repository or QuoteRepository()

    async def transition(self, actor, quote_id, trigger, reason: Optional[str] = None) -> Quote:
        return await sync_to_async(self._transition)(actor, quote_id, trigger, reason)

    async def submit(self, actor, quote_id) -> Quote:
        return await self.transition(actor, quote_id, Trigger.SUBMIT)

    async def approve(self, actor, quote_id) -> Quote:
        return await self.transition(actor, quote_id, Trigger.APPROVE)

    async def reject(self, actor, quote_id, reason: Optional[str] = None) -> Quote:
        return await self.transition(actor, quote_id, Trigger.REJECT, reason=reason)

    async def mark_sent(self, actor, quote_id) -> Quote:
        return await self.transition(actor, quote_id, Trigger.MARK_SENT)

    def _transition(self, actor, quote_id, trigger, reason):
        quote = self.repository.get(actor.organization_id, quote_id)
        plan = plan_transition(quote, trigger, actor, reason=reason)

        with transaction.atomic():
            updated = self.repository.write_status(
                quote.id, plan.from_status, plan.to_status, plan.fields
            )
            AuditLog.log_action(
                action=f'quote_{plan.trigger.value}',
                user=actor.user_id,
                organization=actor.organization_id,
                target_type='Quote',
                target_id=quote.id,
                diff={'status': {'old': plan.from_status.value, 'new': plan.to_status.value}},
                metadata={'reason': reason} if reason else {},
            )

        logger.info(
            "Quote status changed",
            extra={
                'quote_id': str(quote.id),
                'organization_id': str(actor.organization_id),
                'user_id': str(actor.user_id),
                'from_status': plan.from_status.value,
                'to_status': plan.to_status.value,
            }
        )
        return updated
