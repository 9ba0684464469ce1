from decimal import Decimal

from rest_framework import serializers

from clinic.models import Invoice
from clinic.patches import InvoicePatch
from clinic.serializers.appointments import clean_text

INVOICE_STATUS_CHOICES = [c[0] for c in Invoice.STATUS_CHOICES]
PAYMENT_METHOD_CHOICES = [c[0] for c in Invoice.PAYMENT_METHOD_CHOICES]


class InvoiceItemSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=255)
    quantity = serializers.IntegerField(min_value=1)
    unitPrice = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.00'))
    serviceCode = serializers.CharField(max_length=32, required=False, allow_blank=True)
    taxRate = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, allow_null=True)

    def validate_description(self, v):
        v = clean_text(v)
        if not v:
            raise serializers.ValidationError('Item description is required')
        return v


class InvoiceCreateSerializer(serializers.Serializer):
    patientId = serializers.IntegerField(min_value=1)
    appointmentId = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    items = InvoiceItemSerializer(many=True, allow_empty=False)
    dueDate = serializers.DateField()
    notes = serializers.CharField(required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=INVOICE_STATUS_CHOICES, required=False)

    def validate_notes(self, v):
        return clean_text(v)

    def to_service_data(self) -> dict:
        vd = self.validated_data
        return {
            'patient_id': vd['patientId'],
            'appointment_id': vd.get('appointmentId'),
            'due_date': vd['dueDate'],
            'notes': vd.get('notes', ''),
            'status': vd.get('status'),
            'items': [
                {
                    'description': it['description'],
                    'quantity': it['quantity'],
                    'unit_price': it['unitPrice'],
                    'service_code': it.get('serviceCode') or None,
                    'tax_rate': it.get('taxRate'),
                }
                for it in vd['items']
            ],
        }


class InvoiceUpdateSerializer(serializers.Serializer):
    patientId = serializers.IntegerField(min_value=1, required=False)
    appointmentId = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    status = serializers.ChoiceField(choices=INVOICE_STATUS_CHOICES, required=False)
    dueDate = serializers.DateField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate_notes(self, v):
        return clean_text(v)

    def to_patch(self) -> InvoicePatch:
        vd = self.validated_data
        return InvoicePatch(
            patient_id=vd.get('patientId'),
            appointment_id=vd.get('appointmentId'),
            status=vd.get('status'),
            due_date=vd.get('dueDate'),
            notes=vd.get('notes'),
            # an explicit null unlinks the appointment
            clear_appointment='appointmentId' in vd and vd['appointmentId'] is None,
        )


class PaymentCreateSerializer(serializers.Serializer):
    invoiceId = serializers.CharField(max_length=20)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    paymentMethod = serializers.ChoiceField(choices=PAYMENT_METHOD_CHOICES)
    transactionId = serializers.CharField(max_length=128, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    processedBy = serializers.CharField(max_length=150, required=False, allow_blank=True)
    processedDate = serializers.DateTimeField(required=False)

    def validate_notes(self, v):
        return clean_text(v)


class BillingStatsQuerySerializer(serializers.Serializer):
    startDate = serializers.DateField(required=False)
    endDate = serializers.DateField(required=False)


def _money(v) -> str:
    return str(v) if v is not None else None


def format_item(item) -> dict:
    return {
        'id': item.id,
        'description': item.description,
        'quantity': item.quantity,
        'unitPrice': _money(item.unit_price),
        'amount': _money(item.amount),
        'serviceCode': item.service_code,
        'taxRate': _money(item.tax_rate),
    }


def format_invoice(invoice: Invoice, items=None) -> dict:
    if items is None:
        items = invoice.items.all()
    return {
        'id': invoice.id,
        'patientId': invoice.patient_id,
        'appointmentId': invoice.appointment_id,
        'totalAmount': _money(invoice.total_amount),
        'amountPaid': _money(invoice.amount_paid),
        'balance': _money(invoice.balance),
        'status': invoice.status,
        'dueDate': invoice.due_date.isoformat(),
        'paidDate': invoice.paid_date.isoformat() if invoice.paid_date else None,
        'paymentMethod': invoice.payment_method,
        'notes': invoice.notes,
        'items': [format_item(i) for i in items],
        'createdAt': invoice.created_at.isoformat() if invoice.created_at else None,
        'updatedAt': invoice.updated_at.isoformat() if invoice.updated_at else None,
    }


def format_payment(payment) -> dict:
    return {
        'id': payment.id,
        'invoiceId': payment.invoice_id,
        'amount': _money(payment.amount),
        'paymentMethod': payment.payment_method,
        'transactionId': payment.transaction_id,
        'notes': payment.notes,
        'processedBy': payment.processed_by,
        'processedDate': payment.processed_date.isoformat(),
    }


def format_stats(stats: dict) -> dict:
    return {
        'startDate': stats['start_date'].isoformat(),
        'endDate': stats['end_date'].isoformat(),
        'totalInvoiced': _money(stats['total_invoiced']),
        'totalPaid': _money(stats['total_paid']),
        'outstandingBalance': _money(stats['outstanding_balance']),
        'invoicesByStatus': stats['invoices_by_status'],
        'recentPayments': [format_payment(p) for p in stats['recent_payments']],
    }
