from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Iterator, Optional

from django.db import DatabaseError, transaction
from django.db.models import Count, Q, Sum

from clinic.errors import InternalError
from clinic.models import Appointment, Invoice, InvoiceItem, Patient, Payment, Staff
from clinic.services.audit import log_action

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')
CENT = Decimal('0.01')


def _money_sum(value: Optional[Decimal]) -> Decimal:
    # sqlite aggregates lose the column scale
    return (value or ZERO).quantize(CENT)


class OrmStore:
    """Store backed by the default Django database."""

    @contextmanager
    def atomic(self) -> Iterator[None]:
        try:
            with transaction.atomic():
                yield
        except DatabaseError as exc:
            logger.exception('unit of work rolled back after a database error')
            raise InternalError('Failed to persist changes') from exc

    def on_commit(self, fn: Callable[[], Any]) -> None:
        transaction.on_commit(fn)

    def lock_provider(self, provider_id: int) -> None:
        # Row lock on the provider serializes check-then-write per provider.
        list(Staff.objects.select_for_update().filter(pk=provider_id).values_list('pk', flat=True))

    # -- directory ---------------------------------------------------------
    def patient_exists(self, patient_id: int) -> bool:
        return Patient.objects.filter(pk=patient_id).exists()

    def provider_exists(self, provider_id: int) -> bool:
        return Staff.objects.filter(
            pk=provider_id, role__in=Staff.PROVIDER_ROLES, status='active'
        ).exists()

    # -- appointments ------------------------------------------------------
    def appointment_exists(self, appointment_id: int) -> bool:
        return Appointment.objects.filter(pk=appointment_id).exists()

    def get_appointment(self, appointment_id: int, *, for_update: bool = False) -> Optional[Appointment]:
        qs = Appointment.objects.all()
        if for_update:
            qs = qs.select_for_update()
        return qs.filter(pk=appointment_id).first()

    def overlapping_appointments(self, provider_id: int, start: datetime, end: datetime,
                                 exclude_id: Optional[int] = None) -> list[Appointment]:
        qs = (
            Appointment.objects
            .filter(provider_id=provider_id, start_time__lt=end, end_time__gt=start)
            .exclude(status=Appointment.STATUS_CANCELLED)
        )
        if exclude_id is not None:
            qs = qs.exclude(pk=exclude_id)
        return list(qs.order_by('start_time'))

    def add_appointment(self, appointment: Appointment) -> Appointment:
        appointment.save(force_insert=True)
        return appointment

    def update_appointment(self, appointment: Appointment, changes: dict[str, Any]) -> Appointment:
        for field, value in changes.items():
            setattr(appointment, field, value)
        appointment.save(update_fields=[*changes.keys(), 'updated_at'])
        return appointment

    def delete_appointment(self, appointment_id: int) -> bool:
        deleted, _ = Appointment.objects.filter(pk=appointment_id).delete()
        return deleted > 0

    # -- ledger ------------------------------------------------------------
    def get_invoice(self, invoice_id: str, *, for_update: bool = False) -> Optional[Invoice]:
        qs = Invoice.objects.all()
        if for_update:
            qs = qs.select_for_update()
        return qs.filter(pk=invoice_id).first()

    def invoice_items(self, invoice_id: str) -> list[InvoiceItem]:
        return list(InvoiceItem.objects.filter(invoice_id=invoice_id).order_by('position'))

    def add_invoice(self, invoice: Invoice, items: list[InvoiceItem]) -> Invoice:
        invoice.save(force_insert=True)
        for position, item in enumerate(items):
            item.invoice_id = invoice.id
            item.position = position
        InvoiceItem.objects.bulk_create(items)
        return invoice

    def save_invoice(self, invoice: Invoice, fields: list[str]) -> Invoice:
        invoice.save(update_fields=[*fields, 'updated_at'])
        return invoice

    def delete_invoice(self, invoice_id: str) -> bool:
        # items and payments cascade
        deleted, _ = Invoice.objects.filter(pk=invoice_id).delete()
        return deleted > 0

    def add_payment(self, payment: Payment) -> Payment:
        payment.save(force_insert=True)
        return payment

    def invoice_payments(self, invoice_id: str) -> list[Payment]:
        return list(Payment.objects.filter(invoice_id=invoice_id).order_by('-processed_date', '-id'))

    def ledger_totals(self, start: datetime, end: datetime) -> dict[str, Any]:
        invoiced = Invoice.objects.filter(created_at__gte=start, created_at__lt=end).aggregate(
            total=Sum('total_amount'))['total']
        paid = Payment.objects.filter(processed_date__gte=start, processed_date__lt=end).aggregate(
            total=Sum('amount'))['total']
        outstanding = Invoice.objects.filter(
            ~Q(status__in=[Invoice.STATUS_PAID, Invoice.STATUS_CANCELLED])
        ).aggregate(total=Sum('balance'))['total']
        by_status = {
            row['status']: row['count']
            for row in Invoice.objects.values('status').annotate(count=Count('id')).order_by()
        }
        recent = list(Payment.objects.order_by('-processed_date', '-id')[:5])
        return {
            'total_invoiced': _money_sum(invoiced),
            'total_paid': _money_sum(paid),
            'outstanding_balance': _money_sum(outstanding),
            'invoices_by_status': by_status,
            'recent_payments': recent,
        }

    # -- audit -------------------------------------------------------------
    def record_audit(self, *, actor, action: str, object_type: str, object_id: Any,
                     detail: Optional[dict[str, Any]] = None) -> None:
        log_action(user=actor, action=action, object_type=object_type, object_id=object_id, detail=detail)
