from __future__ import annotations

import copy
import itertools
import threading
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Iterator, Optional

from django.utils import timezone

from clinic.models import Appointment, Invoice, InvoiceItem, Patient, Payment, Staff

ZERO = Decimal('0.00')


class MemoryStore:
    """Dictionary-backed store.

    Records are unsaved model instances.  ``atomic()`` holds a re-entrant
    lock for the whole unit of work and restores a snapshot if the block
    raises, so the service invariants hold here exactly as they do against
    the database.
    """

    def __init__(self) -> None:
        self.patients: dict[int, Patient] = {}
        self.staff: dict[int, Staff] = {}
        self.appointments: dict[int, Appointment] = {}
        self.invoices: dict[str, Invoice] = {}
        self.items: dict[str, InvoiceItem] = {}
        self.payments: dict[str, Payment] = {}
        self.audit: list[dict[str, Any]] = []
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        self._depth = 0
        self._pending: list[Callable[[], Any]] = []

    # -- fixtures ----------------------------------------------------------
    def add_patient(self, **fields) -> Patient:
        patient = Patient(id=next(self._ids), **fields)
        self.patients[patient.id] = patient
        return patient

    def add_staff(self, **fields) -> Staff:
        fields.setdefault('role', 'doctor')
        fields.setdefault('email', f"staff{len(self.staff) + 1}@example.org")
        member = Staff(id=next(self._ids), **fields)
        self.staff[member.id] = member
        return member

    # -- unit of work ------------------------------------------------------
    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            snapshot = self._snapshot()
            self._depth += 1
            try:
                yield
            except BaseException:
                self._restore(snapshot)
                if outermost:
                    self._pending.clear()
                raise
            finally:
                self._depth -= 1
            if outermost:
                pending, self._pending = self._pending, []
                for fn in pending:
                    fn()

    def on_commit(self, fn: Callable[[], Any]) -> None:
        if self._depth:
            self._pending.append(fn)
        else:
            fn()

    def lock_provider(self, provider_id: int) -> None:
        # atomic() already serializes every unit of work
        return None

    def _snapshot(self) -> dict[str, Any]:
        tables = ('appointments', 'invoices', 'items', 'payments')
        state = {name: {k: copy.copy(v) for k, v in getattr(self, name).items()} for name in tables}
        state['audit'] = list(self.audit)
        return state

    def _restore(self, state: dict[str, Any]) -> None:
        for name, value in state.items():
            setattr(self, name, value)

    # -- directory ---------------------------------------------------------
    def patient_exists(self, patient_id: int) -> bool:
        return patient_id in self.patients

    def provider_exists(self, provider_id: int) -> bool:
        member = self.staff.get(provider_id)
        return bool(member and member.is_provider)

    # -- appointments ------------------------------------------------------
    def appointment_exists(self, appointment_id: int) -> bool:
        return appointment_id in self.appointments

    def get_appointment(self, appointment_id: int, *, for_update: bool = False) -> Optional[Appointment]:
        return self.appointments.get(appointment_id)

    def overlapping_appointments(self, provider_id: int, start: datetime, end: datetime,
                                 exclude_id: Optional[int] = None) -> list[Appointment]:
        found = [
            a for a in self.appointments.values()
            if a.provider_id == provider_id
            and a.status != Appointment.STATUS_CANCELLED
            and a.id != exclude_id
            and start < a.end_time and a.start_time < end
        ]
        return sorted(found, key=lambda a: a.start_time)

    def add_appointment(self, appointment: Appointment) -> Appointment:
        now = timezone.now()
        appointment.id = next(self._ids)
        appointment.created_at = appointment.updated_at = now
        self.appointments[appointment.id] = appointment
        return appointment

    def update_appointment(self, appointment: Appointment, changes: dict[str, Any]) -> Appointment:
        for field, value in changes.items():
            setattr(appointment, field, value)
        appointment.updated_at = timezone.now()
        self.appointments[appointment.id] = appointment
        return appointment

    def delete_appointment(self, appointment_id: int) -> bool:
        if self.appointments.pop(appointment_id, None) is None:
            return False
        for invoice in self.invoices.values():
            if invoice.appointment_id == appointment_id:
                invoice.appointment_id = None
        return True

    # -- ledger ------------------------------------------------------------
    def get_invoice(self, invoice_id: str, *, for_update: bool = False) -> Optional[Invoice]:
        return self.invoices.get(invoice_id)

    def invoice_items(self, invoice_id: str) -> list[InvoiceItem]:
        items = [i for i in self.items.values() if i.invoice_id == invoice_id]
        return sorted(items, key=lambda i: i.position)

    def add_invoice(self, invoice: Invoice, items: list[InvoiceItem]) -> Invoice:
        now = timezone.now()
        invoice.created_at = invoice.updated_at = now
        self.invoices[invoice.id] = invoice
        for position, item in enumerate(items):
            item.invoice_id = invoice.id
            item.position = position
            self.items[item.id] = item
        return invoice

    def save_invoice(self, invoice: Invoice, fields: list[str]) -> Invoice:
        invoice.updated_at = timezone.now()
        self.invoices[invoice.id] = invoice
        return invoice

    def delete_invoice(self, invoice_id: str) -> bool:
        if self.invoices.pop(invoice_id, None) is None:
            return False
        self.items = {k: v for k, v in self.items.items() if v.invoice_id != invoice_id}
        self.payments = {k: v for k, v in self.payments.items() if v.invoice_id != invoice_id}
        return True

    def add_payment(self, payment: Payment) -> Payment:
        self.payments[payment.id] = payment
        return payment

    def invoice_payments(self, invoice_id: str) -> list[Payment]:
        found = [p for p in self.payments.values() if p.invoice_id == invoice_id]
        return sorted(found, key=lambda p: p.processed_date, reverse=True)

    def ledger_totals(self, start: datetime, end: datetime) -> dict[str, Any]:
        invoices = list(self.invoices.values())
        by_status: dict[str, int] = {}
        for invoice in invoices:
            by_status[invoice.status] = by_status.get(invoice.status, 0) + 1
        return {
            'total_invoiced': sum(
                (i.total_amount for i in invoices if start <= i.created_at < end), ZERO),
            'total_paid': sum(
                (p.amount for p in self.payments.values() if start <= p.processed_date < end), ZERO),
            'outstanding_balance': sum(
                (i.balance for i in invoices
                 if i.status not in (Invoice.STATUS_PAID, Invoice.STATUS_CANCELLED)), ZERO),
            'invoices_by_status': by_status,
            'recent_payments': sorted(
                self.payments.values(), key=lambda p: p.processed_date, reverse=True)[:5],
        }

    # -- audit -------------------------------------------------------------
    def record_audit(self, *, actor, action: str, object_type: str, object_id: Any,
                     detail: Optional[dict[str, Any]] = None) -> None:
        self.audit.append({
            'user': getattr(actor, 'pk', None),
            'action': action,
            'object_type': object_type,
            'object_id': str(object_id) if object_id is not None else None,
            'detail': detail or {},
        })
