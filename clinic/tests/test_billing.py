"""
Billing ledger tests against the in-memory store.
"""
from datetime import date, timedelta
from decimal import Decimal

import pytest
from django.core.cache import cache
from django.utils import timezone

from clinic.errors import NotFoundError, ValidationError
from clinic.models import Appointment, Invoice
from clinic.patches import InvoicePatch
from clinic.services.billing import BillingService, default_stats_range, to_money
from clinic.stores import MemoryStore

D = Decimal


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def patient(store):
    return store.add_patient(first_name='Ada', last_name='Lovelace')


@pytest.fixture
def events():
    return []


@pytest.fixture
def billing(store, events):
    return BillingService(store, publish=lambda event, payload: events.append(event), stats_cache_seconds=0)


def make_invoice(billing, patient, items=None, **extra):
    data = {
        'patient_id': patient.id,
        'due_date': date.today() + timedelta(days=30),
        'items': items or [
            {'description': 'Consultation', 'quantity': 1, 'unit_price': D('100.00')},
            {'description': 'Blood panel', 'quantity': 1, 'unit_price': D('50.00')},
        ],
    }
    data.update(extra)
    return billing.create_invoice(data)


def pay(billing, invoice, amount, method='cash'):
    return billing.record_payment(invoice.id, amount, method, processed_by='cashier')


# ---------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------
def test_invoice_totals_are_sum_of_items(billing, store, patient):
    invoice = make_invoice(billing, patient, items=[
        {'description': 'Dressing', 'quantity': 3, 'unit_price': D('12.35')},
        {'description': 'X-ray', 'quantity': 1, 'unit_price': '80.10'},
        {'description': 'Follow-up call', 'quantity': 2, 'unit_price': D('0')},
    ])
    items = store.invoice_items(invoice.id)
    assert [i.amount for i in items] == [D('37.05'), D('80.10'), D('0.00')]
    assert [i.position for i in items] == [0, 1, 2]
    assert invoice.total_amount == sum(i.amount for i in items) == D('117.15')
    assert invoice.balance == invoice.total_amount
    assert invoice.amount_paid == D('0.00')
    assert invoice.status == Invoice.STATUS_DRAFT
    assert invoice.id.startswith('INV-')
    assert all(i.id.startswith('ITEM-') for i in items)


@pytest.mark.parametrize('items', [
    [],
    [{'description': '', 'quantity': 1, 'unit_price': D('1')}],
    [{'description': 'x', 'quantity': 0, 'unit_price': D('1')}],
    [{'description': 'x', 'quantity': 1, 'unit_price': D('-0.01')}],
    [{'description': 'x', 'quantity': 1, 'unit_price': 'abc'}],
])
def test_invalid_items_are_rejected(billing, store, patient, items):
    data = {'patient_id': patient.id, 'due_date': date.today(), 'items': items}
    with pytest.raises(ValidationError):
        billing.create_invoice(data)
    assert store.invoices == {}
    assert store.items == {}


def test_unknown_patient_or_appointment(billing, patient):
    with pytest.raises(NotFoundError, match='Patient not found'):
        make_invoice(billing, patient, patient_id=404)
    with pytest.raises(NotFoundError, match='Appointment not found'):
        make_invoice(billing, patient, appointment_id=404)


def test_caller_may_choose_initial_status_but_not_a_paid_one(billing, patient):
    assert make_invoice(billing, patient, status='sent').status == 'sent'
    with pytest.raises(ValidationError):
        make_invoice(billing, patient, status='paid')


# ---------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------
def test_partial_then_full_payment(billing, store, patient):
    invoice = make_invoice(billing, patient)
    assert (invoice.total_amount, invoice.balance) == (D('150.00'), D('150.00'))

    pay(billing, invoice, D('100.00'))
    invoice = store.get_invoice(invoice.id)
    assert invoice.balance == D('50.00')
    assert invoice.status == Invoice.STATUS_PARTIALLY_PAID
    assert invoice.paid_date is None

    payment = pay(billing, invoice, '50.00', method='credit_card')
    invoice = store.get_invoice(invoice.id)
    assert invoice.balance == D('0.00')
    assert invoice.amount_paid == D('150.00')
    assert invoice.status == Invoice.STATUS_PAID
    assert invoice.paid_date == payment.processed_date
    assert invoice.payment_method == 'credit_card'
    assert sum(p.amount for p in store.invoice_payments(invoice.id)) == invoice.amount_paid
    assert payment.id.startswith('PAY-')


def test_overpayment_is_rejected_and_ledger_unchanged(billing, store, patient):
    invoice = make_invoice(billing, patient)
    with pytest.raises(ValidationError) as exc:
        pay(billing, invoice, D('200.00'))
    assert exc.value.message == 'Payment amount cannot exceed the invoice balance'

    invoice = store.get_invoice(invoice.id)
    assert invoice.balance == D('150.00')
    assert invoice.amount_paid == D('0.00')
    assert invoice.status == Invoice.STATUS_DRAFT
    assert store.payments == {}


@pytest.mark.parametrize('amount', [D('0'), D('-5.00')])
def test_payment_must_be_positive(billing, patient, amount):
    invoice = make_invoice(billing, patient)
    with pytest.raises(ValidationError):
        pay(billing, invoice, amount)


def test_payment_against_missing_or_cancelled_invoice(billing, patient):
    with pytest.raises(NotFoundError):
        billing.record_payment('INV-NOPE', D('1.00'), 'cash', processed_by='x')
    invoice = make_invoice(billing, patient, status='cancelled')
    with pytest.raises(ValidationError):
        pay(billing, invoice, D('1.00'))


def test_many_small_payments_settle_exactly(billing, store, patient):
    invoice = make_invoice(billing, patient, items=[
        {'description': 'Physio', 'quantity': 3, 'unit_price': D('33.33')},
    ])
    for _ in range(9):
        pay(billing, invoice, D('11.11'))
    invoice = store.get_invoice(invoice.id)
    assert invoice.balance == D('0.00')
    assert invoice.status == Invoice.STATUS_PAID


# ---------------------------------------------------------------------
# Update / delete
# ---------------------------------------------------------------------
def test_paid_invoice_only_accepts_status_reversal(billing, store, patient):
    invoice = make_invoice(billing, patient)
    pay(billing, invoice, D('150.00'))

    with pytest.raises(ValidationError, match='Paid invoices cannot be modified'):
        billing.update_invoice(invoice.id, InvoicePatch(notes='late fee waived'))
    with pytest.raises(ValidationError):
        billing.update_invoice(invoice.id, InvoicePatch(status='sent', notes='x'))

    updated = billing.update_invoice(invoice.id, InvoicePatch(status='sent'))
    assert updated.status == 'sent'


def test_status_must_agree_with_balance(billing, patient):
    invoice = make_invoice(billing, patient)
    with pytest.raises(ValidationError):
        billing.update_invoice(invoice.id, InvoicePatch(status='paid'))
    with pytest.raises(ValidationError):
        billing.update_invoice(invoice.id, InvoicePatch(status='partially_paid'))
    assert billing.update_invoice(invoice.id, InvoicePatch(status='overdue')).status == 'overdue'


def test_invoice_with_payments_cannot_return_to_draft(billing, store, patient):
    invoice = make_invoice(billing, patient)
    pay(billing, invoice, D('100.00'))

    with pytest.raises(ValidationError, match='cannot return to draft'):
        billing.update_invoice(invoice.id, InvoicePatch(status='draft'))
    with pytest.raises(ValidationError, match='Only draft invoices can be deleted'):
        billing.delete_invoice(invoice.id)

    invoice = store.get_invoice(invoice.id)
    assert invoice.status == Invoice.STATUS_PARTIALLY_PAID
    assert [p.amount for p in store.invoice_payments(invoice.id)] == [D('100.00')]


def test_paid_invoice_cannot_return_to_draft(billing, store, patient):
    invoice = make_invoice(billing, patient)
    pay(billing, invoice, D('150.00'))
    with pytest.raises(ValidationError):
        billing.update_invoice(invoice.id, InvoicePatch(status='draft'))
    assert len(store.invoice_payments(invoice.id)) == 1


def test_clear_appointment_link(billing, store, patient):
    doctor = store.add_staff(first_name='Gregory', last_name='House')
    start = timezone.now() + timedelta(days=1)
    appointment = store.add_appointment(Appointment(
        patient_id=patient.id, provider_id=doctor.id, title='Checkup',
        start_time=start, end_time=start + timedelta(minutes=30),
    ))
    invoice = make_invoice(billing, patient, appointment_id=appointment.id)

    assert billing.update_invoice(invoice.id, InvoicePatch(notes='x')).appointment_id == appointment.id
    assert InvoicePatch(clear_appointment=True).changes() == {'appointment_id': None}
    updated = billing.update_invoice(invoice.id, InvoicePatch(clear_appointment=True))
    assert updated.appointment_id is None
    assert store.get_invoice(invoice.id).appointment_id is None


def test_update_fields_and_missing_invoice(billing, patient):
    invoice = make_invoice(billing, patient)
    new_due = date.today() + timedelta(days=60)
    updated = billing.update_invoice(invoice.id, InvoicePatch(due_date=new_due, notes='net 60'))
    assert (updated.due_date, updated.notes) == (new_due, 'net 60')
    with pytest.raises(NotFoundError):
        billing.update_invoice('INV-NOPE', InvoicePatch(notes='x'))


def test_delete_draft_invoice_cascades(billing, store, patient):
    invoice = make_invoice(billing, patient)
    assert billing.delete_invoice(invoice.id) is True
    assert store.get_invoice(invoice.id) is None
    assert store.invoice_items(invoice.id) == []
    assert billing.delete_invoice(invoice.id) is False


def test_non_draft_invoice_cannot_be_deleted(billing, store, patient):
    invoice = make_invoice(billing, patient, status='sent')
    with pytest.raises(ValidationError, match='Only draft invoices can be deleted'):
        billing.delete_invoice(invoice.id)
    assert store.get_invoice(invoice.id) is not None
    assert len(store.invoice_items(invoice.id)) == 2


def test_ledger_writes_are_audited_and_published(billing, store, events, patient):
    invoice = make_invoice(billing, patient)
    pay(billing, invoice, D('10.00'))
    billing.update_invoice(invoice.id, InvoicePatch(notes='called patient'))
    assert [e['action'] for e in store.audit] == ['invoice_create', 'payment_record', 'invoice_update']
    assert events == ['invoice.created', 'payment.recorded', 'invoice.updated']


# ---------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------
@pytest.mark.parametrize('today,expected', [
    (date(2024, 3, 15), (date(2024, 2, 1), date(2024, 3, 31))),
    (date(2024, 1, 1), (date(2023, 12, 1), date(2024, 1, 31))),
    (date(2023, 2, 28), (date(2023, 1, 1), date(2023, 2, 28))),
])
def test_default_stats_range(today, expected):
    assert default_stats_range(today) == expected


def test_billing_stats(billing, patient):
    a = make_invoice(billing, patient)
    b = make_invoice(billing, patient, items=[{'description': 'Cast', 'quantity': 1, 'unit_price': D('80.00')}])
    c = make_invoice(billing, patient, status='cancelled',
                     items=[{'description': 'Void', 'quantity': 1, 'unit_price': D('5.00')}])
    pay(billing, a, D('150.00'))
    pay(billing, b, D('30.00'))

    stats = billing.get_billing_stats()
    assert stats['total_invoiced'] == D('235.00')
    assert stats['total_paid'] == D('180.00')
    assert stats['outstanding_balance'] == D('50.00')
    assert stats['invoices_by_status'] == {'paid': 1, 'partially_paid': 1, 'cancelled': 1}
    assert [p.amount for p in stats['recent_payments']] == [D('30.00'), D('150.00')]
    assert c.id not in {p.invoice_id for p in stats['recent_payments']}


def test_billing_stats_outside_range_are_zero(billing, patient):
    make_invoice(billing, patient)
    today = timezone.localdate()
    stats = billing.get_billing_stats(today - timedelta(days=400), today - timedelta(days=300))
    assert stats['total_invoiced'] == D('0.00')
    assert stats['total_paid'] == D('0.00')
    assert stats['outstanding_balance'] == D('150.00')


def test_billing_stats_rejects_inverted_range(billing):
    with pytest.raises(ValidationError):
        billing.get_billing_stats(date(2024, 5, 1), date(2024, 4, 1))


def test_stats_cache_is_invalidated_by_ledger_writes(store, patient):
    cache.clear()
    billing = BillingService(store, publish=lambda *a: None, stats_cache_seconds=60)
    invoice = make_invoice(billing, patient)
    assert billing.get_billing_stats()['total_paid'] == D('0.00')

    # a write that bypasses the service is not seen while cached
    store.invoices[invoice.id].balance = D('1.00')
    assert billing.get_billing_stats()['outstanding_balance'] == D('150.00')
    store.invoices[invoice.id].balance = D('150.00')

    pay(billing, invoice, D('20.00'))
    stats = billing.get_billing_stats()
    assert stats['total_paid'] == D('20.00')


@pytest.mark.parametrize('value,expected', [
    (0.1 + 0.2, D('0.30')),
    ('19.999', D('20.00')),
    (7, D('7.00')),
])
def test_to_money(value, expected):
    assert to_money(value) == expected
