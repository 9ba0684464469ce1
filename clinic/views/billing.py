"""
Billing endpoints: invoices, payments and ledger statistics.

Billing staff (administrators, receptionists, accountants) manage
invoices and record payments.  Doctors may look at an invoice and at a
patient's invoices.  Only administrators delete invoices, and only
administrators and accountants see the statistics.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes

from clinic.errors import NotFoundError
from clinic.permissions import (
    CanViewBillingStats,
    CanViewInvoices,
    IsAdminRole,
    IsBillingStaff,
    require_role,
)
from clinic.responses import success_response
from clinic.serializers.billing import (
    BillingStatsQuerySerializer,
    InvoiceCreateSerializer,
    InvoiceUpdateSerializer,
    PaymentCreateSerializer,
    format_invoice,
    format_payment,
    format_stats,
)
from clinic.services import queries
from clinic.services.billing import BillingService


def _service() -> BillingService:
    return BillingService()


@api_view(['GET', 'POST'])
@permission_classes([IsBillingStaff])
def invoices(request):
    if request.method == 'POST':
        s = InvoiceCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        invoice = _service().create_invoice(s.to_service_data(), actor=request.user)
        return success_response('Invoice created successfully',
                                format_invoice(queries.get_invoice(invoice.id)),
                                status=status.HTTP_201_CREATED)

    return success_response('Invoices retrieved successfully',
                            [format_invoice(i) for i in queries.list_invoices()])


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([CanViewInvoices])
def invoice_detail(request, invoice_id: str):
    if request.method == 'GET':
        return success_response('Invoice retrieved successfully',
                                format_invoice(queries.get_invoice(invoice_id)))

    if request.method == 'PUT':
        require_role(request, IsBillingStaff)
        s = InvoiceUpdateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        _service().update_invoice(invoice_id, s.to_patch(), actor=request.user)
        return success_response('Invoice updated successfully',
                                format_invoice(queries.get_invoice(invoice_id)))

    require_role(request, IsAdminRole)
    if not _service().delete_invoice(invoice_id, actor=request.user):
        raise NotFoundError('Invoice not found')
    return success_response('Invoice deleted successfully')


@api_view(['GET'])
@permission_classes([IsBillingStaff])
def invoice_payments(request, invoice_id: str):
    qs = queries.invoice_payments(invoice_id)
    return success_response('Payments retrieved successfully', [format_payment(p) for p in qs])


@api_view(['GET'])
@permission_classes([CanViewInvoices])
def patient_invoices(request, patient_id: int):
    qs = queries.invoices_for_patient(patient_id)
    return success_response('Invoices retrieved successfully', [format_invoice(i) for i in qs])


@api_view(['POST'])
@permission_classes([IsBillingStaff])
def record_payment(request):
    s = PaymentCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    payment = _service().record_payment(
        vd['invoiceId'],
        vd['amount'],
        vd['paymentMethod'],
        processed_by=vd.get('processedBy') or request.user.get_username(),
        transaction_id=vd.get('transactionId') or None,
        notes=vd.get('notes'),
        processed_date=vd.get('processedDate'),
        actor=request.user,
    )
    return success_response('Payment recorded successfully', format_payment(payment),
                            status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([CanViewBillingStats])
def billing_stats(request):
    q = BillingStatsQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    stats = _service().get_billing_stats(q.validated_data.get('startDate'), q.validated_data.get('endDate'))
    return success_response('Billing statistics retrieved successfully', format_stats(stats))
