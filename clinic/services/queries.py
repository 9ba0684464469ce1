"""Read-side helpers for appointments and invoices (ORM only)."""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Optional

from django.db.models import Count, Prefetch, Q, QuerySet
from django.utils import timezone

from clinic.errors import NotFoundError
from clinic.models import Appointment, Invoice, InvoiceItem, Patient, Payment, Staff


def _appointments() -> QuerySet:
    return Appointment.objects.select_related('patient', 'provider')


def _invoices() -> QuerySet:
    return Invoice.objects.select_related('patient').prefetch_related(
        Prefetch('items', queryset=InvoiceItem.objects.order_by('position'))
    )


def _start_of(day: date) -> datetime:
    return timezone.make_aware(datetime.combine(day, time.min), timezone.get_current_timezone())


# ---------------------------------------------------------------------
# Appointments
# ---------------------------------------------------------------------
def list_appointments(start_date: Optional[date] = None, end_date: Optional[date] = None) -> QuerySet:
    qs = _appointments()
    if start_date:
        qs = qs.filter(start_time__gte=_start_of(start_date))
    if end_date:
        qs = qs.filter(start_time__lt=_start_of(end_date + timedelta(days=1)))
    return qs.order_by('start_time')


def get_appointment(appointment_id: int) -> Appointment:
    appt = _appointments().filter(pk=appointment_id).first()
    if appt is None:
        raise NotFoundError('Appointment not found')
    return appt


def appointments_for_provider(provider_id: int) -> QuerySet:
    if not Staff.objects.filter(pk=provider_id, role__in=Staff.PROVIDER_ROLES).exists():
        raise NotFoundError('Provider not found')
    return _appointments().filter(provider_id=provider_id).order_by('start_time')


def appointments_for_patient(patient_id: int) -> QuerySet:
    if not Patient.objects.filter(pk=patient_id).exists():
        raise NotFoundError('Patient not found')
    return _appointments().filter(patient_id=patient_id).order_by('start_time')


def search_appointments(q: str) -> QuerySet:
    q = (q or '').strip()
    if not q:
        return _appointments().none()
    cond = (
        Q(title__icontains=q) | Q(notes__icontains=q) | Q(reason__icontains=q)
        | Q(patient__first_name__icontains=q) | Q(patient__last_name__icontains=q)
        | Q(provider__first_name__icontains=q) | Q(provider__last_name__icontains=q)
    )
    return _appointments().filter(cond).order_by('start_time')


def upcoming_appointments(limit: int = 10, now: Optional[datetime] = None) -> QuerySet:
    return (
        _appointments()
        .filter(start_time__gte=now or timezone.now(), status=Appointment.STATUS_SCHEDULED)
        .order_by('start_time')[:limit]
    )


def appointment_stats() -> dict:
    qs = Appointment.objects.all()
    by_status = {r['status']: r['n'] for r in qs.values('status').annotate(n=Count('id')).order_by()}
    by_type = {r['type']: r['n'] for r in qs.values('type').annotate(n=Count('id')).order_by()}
    top = (
        qs.values('provider_id', 'provider__first_name', 'provider__last_name')
        .annotate(n=Count('id'))
        .order_by('-n', 'provider_id')[:5]
    )
    return {
        'total': qs.count(),
        'byStatus': by_status,
        'byType': by_type,
        'byDoctor': [
            {
                'providerId': r['provider_id'],
                'providerName': f"{r['provider__first_name']} {r['provider__last_name']}".strip(),
                'count': r['n'],
            }
            for r in top
        ],
    }


# ---------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------
def list_invoices() -> QuerySet:
    return _invoices().order_by('-created_at')


def get_invoice(invoice_id: str) -> Invoice:
    invoice = _invoices().filter(pk=invoice_id).first()
    if invoice is None:
        raise NotFoundError('Invoice not found')
    return invoice


def invoices_for_patient(patient_id: int) -> QuerySet:
    if not Patient.objects.filter(pk=patient_id).exists():
        raise NotFoundError('Patient not found')
    return _invoices().filter(patient_id=patient_id).order_by('-created_at')


def invoice_payments(invoice_id: str) -> QuerySet:
    if not Invoice.objects.filter(pk=invoice_id).exists():
        raise NotFoundError('Invoice not found')
    return Payment.objects.filter(invoice_id=invoice_id).order_by('-processed_date', '-id')
