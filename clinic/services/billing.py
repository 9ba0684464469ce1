"""
Billing ledger.

Invoices are created with a fixed list of items; from then on the money
columns (``amount_paid``, ``balance``) and the paid/partially-paid states
only move through :meth:`BillingService.record_payment`.  All amounts are
``Decimal`` values quantized to cents.

Ledger statistics are cached.  The cache key carries a version number that
is bumped after every committed ledger write, so a cached figure is never
served once the ledger has changed.
"""
from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Optional

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

from clinic.errors import NotFoundError, ValidationError
from clinic.models import Invoice, InvoiceItem, Payment
from clinic.patches import InvoicePatch
from clinic.services.realtime import broadcast_update
from clinic.stores import default_store

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
ZERO = Decimal('0.00')

STATS_VERSION_KEY = 'billing:stats:version'

# statuses that follow the balance and cannot be chosen freely
_BALANCE_STATUSES = (Invoice.STATUS_PAID, Invoice.STATUS_PARTIALLY_PAID)
_PAID_REVERT_STATUSES = (Invoice.STATUS_PARTIALLY_PAID, Invoice.STATUS_SENT)


def to_money(value: Any) -> Decimal:
    """Coerce ``value`` to a two-place ``Decimal``.  Floats go through ``str``."""
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError('Invalid monetary amount', detail={'value': str(value)}) from None


def default_stats_range(today: Optional[date] = None) -> tuple[date, date]:
    """First day of the previous month through the last day of the current one."""
    today = today or timezone.localdate()
    first_of_month = today.replace(day=1)
    start = (first_of_month - timedelta(days=1)).replace(day=1)
    end = today.replace(day=calendar.monthrange(today.year, today.month)[1])
    return start, end


def _day_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    tz = timezone.get_current_timezone()
    return (
        timezone.make_aware(datetime.combine(start, time.min), tz),
        timezone.make_aware(datetime.combine(end + timedelta(days=1), time.min), tz),
    )


def bump_stats_version() -> None:
    try:
        cache.incr(STATS_VERSION_KEY)
    except ValueError:
        cache.set(STATS_VERSION_KEY, 2, None)


class BillingService:
    def __init__(self, store=None, publish: Optional[Callable[[str, dict], Any]] = None,
                 stats_cache_seconds: Optional[int] = None):
        self.store = store if store is not None else default_store()
        self.publish = publish if publish is not None else broadcast_update
        if stats_cache_seconds is None:
            stats_cache_seconds = getattr(settings, 'STATS_CACHE_SECONDS', 60)
        self.stats_cache_seconds = stats_cache_seconds

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------
    def create_invoice(self, data: dict[str, Any], *, actor=None) -> Invoice:
        patient_id = data.get('patient_id')
        appointment_id = data.get('appointment_id')
        status = data.get('status') or Invoice.STATUS_DRAFT

        if not self.store.patient_exists(patient_id):
            raise NotFoundError('Patient not found')
        if appointment_id is not None and not self.store.appointment_exists(appointment_id):
            raise NotFoundError('Appointment not found')
        if data.get('due_date') is None:
            raise ValidationError('Due date is required')
        if status in _BALANCE_STATUSES:
            raise ValidationError(
                f'A new invoice cannot start as {status}', detail={'status': status}
            )

        items = self._build_items(data.get('items') or [])
        total = sum((item.amount for item in items), ZERO)

        invoice = Invoice(
            patient_id=patient_id,
            appointment_id=appointment_id,
            total_amount=total,
            amount_paid=ZERO,
            balance=total,
            status=status,
            due_date=data['due_date'],
            notes=data.get('notes') or '',
        )

        with self.store.atomic():
            self.store.add_invoice(invoice, items)
            self.store.record_audit(
                actor=actor, action='invoice_create', object_type='invoice', object_id=invoice.id,
                detail={'total': str(total), 'items': len(items)},
            )
            self._after_commit('invoice.created', {'id': invoice.id, 'status': invoice.status})

        logger.info('invoice %s created for patient %s total=%s', invoice.id, patient_id, total)
        return invoice

    def update_invoice(self, invoice_id: str, patch: InvoicePatch, *, actor=None) -> Invoice:
        changes = patch.changes()

        with self.store.atomic():
            invoice = self.store.get_invoice(invoice_id, for_update=True)
            if invoice is None:
                raise NotFoundError('Invoice not found')

            if invoice.status == Invoice.STATUS_PAID:
                if set(changes) != {'status'} or changes['status'] not in _PAID_REVERT_STATUSES:
                    raise ValidationError('Paid invoices cannot be modified')
            elif 'status' in changes:
                self._check_status_matches_balance(invoice, changes['status'])

            if 'patient_id' in changes and not self.store.patient_exists(changes['patient_id']):
                raise NotFoundError('Patient not found')
            appointment_id = changes.get('appointment_id')
            if appointment_id is not None and not self.store.appointment_exists(appointment_id):
                raise NotFoundError('Appointment not found')

            if changes:
                for field, value in changes.items():
                    setattr(invoice, field, value)
                self.store.save_invoice(invoice, list(changes))
                self.store.record_audit(
                    actor=actor, action='invoice_update', object_type='invoice', object_id=invoice_id,
                    detail={'fields': sorted(changes)},
                )
                self._after_commit('invoice.updated', {'id': invoice_id, 'status': invoice.status})

        logger.info('invoice %s updated (%s)', invoice_id, ', '.join(sorted(changes)) or 'no changes')
        return invoice

    def delete_invoice(self, invoice_id: str, *, actor=None) -> bool:
        with self.store.atomic():
            invoice = self.store.get_invoice(invoice_id, for_update=True)
            if invoice is None:
                return False
            if invoice.status != Invoice.STATUS_DRAFT or invoice.amount_paid > ZERO:
                raise ValidationError(
                    'Only draft invoices can be deleted', detail={'status': invoice.status}
                )
            self.store.delete_invoice(invoice_id)
            self.store.record_audit(
                actor=actor, action='invoice_delete', object_type='invoice', object_id=invoice_id,
            )
            self._after_commit('invoice.deleted', {'id': invoice_id})

        logger.info('invoice %s deleted', invoice_id)
        return True

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------
    def record_payment(self, invoice_id: str, amount: Any, payment_method: str, *,
                       processed_by: str, transaction_id: Optional[str] = None,
                       notes: Optional[str] = None, processed_date: Optional[datetime] = None,
                       actor=None) -> Payment:
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError('Payment amount must be greater than zero')
        processed_date = processed_date or timezone.now()

        with self.store.atomic():
            invoice = self.store.get_invoice(invoice_id, for_update=True)
            if invoice is None:
                raise NotFoundError('Invoice not found')
            if invoice.status == Invoice.STATUS_CANCELLED:
                raise ValidationError('Cannot record a payment against a cancelled invoice')
            if amount > invoice.balance:
                raise ValidationError(
                    'Payment amount cannot exceed the invoice balance',
                    detail={'amount': str(amount), 'balance': str(invoice.balance)},
                )

            payment = Payment(
                invoice_id=invoice.id,
                amount=amount,
                payment_method=payment_method,
                transaction_id=transaction_id,
                notes=notes or '',
                processed_by=processed_by,
                processed_date=processed_date,
            )
            self.store.add_payment(payment)

            invoice.amount_paid = to_money(invoice.amount_paid + amount)
            invoice.balance = to_money(invoice.total_amount - invoice.amount_paid)
            fields = ['amount_paid', 'balance']
            if invoice.balance <= ZERO:
                invoice.status = Invoice.STATUS_PAID
                invoice.paid_date = processed_date
                invoice.payment_method = payment_method
                fields += ['status', 'paid_date', 'payment_method']
            elif invoice.balance < invoice.total_amount:
                invoice.status = Invoice.STATUS_PARTIALLY_PAID
                fields.append('status')
            self.store.save_invoice(invoice, fields)

            self.store.record_audit(
                actor=actor, action='payment_record', object_type='invoice', object_id=invoice.id,
                detail={'paymentId': payment.id, 'amount': str(amount), 'balance': str(invoice.balance)},
            )
            self._after_commit('payment.recorded', {
                'id': payment.id, 'invoiceId': invoice.id, 'status': invoice.status,
            })

        logger.info('payment %s of %s applied to %s, balance now %s',
                    payment.id, amount, invoice.id, invoice.balance)
        return payment

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------
    def get_billing_stats(self, start_date: Optional[date] = None,
                          end_date: Optional[date] = None) -> dict[str, Any]:
        default_start, default_end = default_stats_range()
        start_date = start_date or default_start
        end_date = end_date or default_end
        if start_date > end_date:
            raise ValidationError('Start date must not be after end date')

        key = None
        if self.stats_cache_seconds:
            version = cache.get_or_set(STATS_VERSION_KEY, 1, None)
            key = f'billing:stats:v{version}:{start_date.isoformat()}:{end_date.isoformat()}'
            cached = cache.get(key)
            if cached is not None:
                return cached

        stats = {'start_date': start_date, 'end_date': end_date}
        stats.update(self.store.ledger_totals(*_day_bounds(start_date, end_date)))
        if key:
            cache.set(key, stats, self.stats_cache_seconds)
        return stats

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _build_items(raw_items: list[dict[str, Any]]) -> list[InvoiceItem]:
        if not raw_items:
            raise ValidationError('An invoice needs at least one item')
        items = []
        for index, raw in enumerate(raw_items):
            description = (raw.get('description') or '').strip()
            quantity = raw.get('quantity')
            if not description:
                raise ValidationError('Item description is required', detail={'item': index})
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                raise ValidationError('Item quantity must be a positive integer', detail={'item': index})
            unit_price = to_money(raw.get('unit_price'))
            if unit_price < ZERO:
                raise ValidationError('Item unit price cannot be negative', detail={'item': index})
            tax_rate = raw.get('tax_rate')
            items.append(InvoiceItem(
                description=description,
                quantity=quantity,
                unit_price=unit_price,
                amount=to_money(unit_price * quantity),
                service_code=raw.get('service_code') or None,
                tax_rate=to_money(tax_rate) if tax_rate is not None else None,
            ))
        return items

    @staticmethod
    def _check_status_matches_balance(invoice: Invoice, status: str) -> None:
        if status == Invoice.STATUS_DRAFT and invoice.amount_paid > ZERO:
            raise ValidationError(
                'An invoice with recorded payments cannot return to draft',
                detail={'amountPaid': str(invoice.amount_paid)},
            )
        if status == Invoice.STATUS_PAID and invoice.balance != ZERO:
            raise ValidationError(
                'Only a fully settled invoice can be marked as paid',
                detail={'balance': str(invoice.balance)},
            )
        if status == Invoice.STATUS_PARTIALLY_PAID and not (ZERO < invoice.balance < invoice.total_amount):
            raise ValidationError(
                'Only an invoice with some payments and a remaining balance can be partially paid',
                detail={'balance': str(invoice.balance)},
            )

    def _after_commit(self, event: str, payload: dict) -> None:
        publish = self.publish

        def _notify():
            bump_stats_version()
            publish(event, payload)

        self.store.on_commit(_notify)
