"""
Database models for the hospital administration backend.

The directory models (:class:`Patient`, :class:`Staff`) are only consulted
by identifier; the scheduling and billing models carry the invariants
enforced by :mod:`clinic.services`.  Table names follow the relational
layout shared with the front-end (``appointments``, ``invoices``,
``invoice_items``, ``payments``).
"""
from __future__ import annotations

import uuid
from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.db import models


def _short_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10].upper()}"


def new_invoice_id() -> str:
    return _short_id("INV")


def new_item_id() -> str:
    return _short_id("ITEM")


def new_payment_id() -> str:
    return _short_id("PAY")


ROLE_CHOICES = [
    ('admin', 'Administrator'),
    ('doctor', 'Doctor'),
    ('nurse', 'Nurse'),
    ('receptionist', 'Receptionist'),
    ('accountant', 'Accountant'),
]


class User(AbstractUser):
    """Login account.  The role drives every permission check."""
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default='receptionist')

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class Patient(models.Model):
    GENDER_CHOICES = [
        ('male', 'Male'),
        ('female', 'Female'),
        ('other', 'Other'),
    ]
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES, blank=True)
    contact_number = models.CharField(max_length=32, blank=True)
    email = models.EmailField(blank=True)
    address = models.TextField(blank=True)
    insurance_provider = models.CharField(max_length=255, blank=True)
    insurance_policy_number = models.CharField(max_length=64, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'patients'

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __str__(self) -> str:
        return f"{self.full_name} (#{self.pk})"


class Staff(models.Model):
    """A member of staff.  Active doctors are the providers appointments are booked against."""
    PROVIDER_ROLES = ('doctor',)
    STATUS_CHOICES = [
        ('active', 'Active'),
        ('inactive', 'Inactive'),
    ]
    user = models.OneToOneField(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='staff_profile'
    )
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    email = models.EmailField(unique=True)
    contact_number = models.CharField(max_length=32, blank=True)
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, db_index=True)
    specialization = models.CharField(max_length=255, blank=True)
    department = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='active')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'staff'

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_provider(self) -> bool:
        return self.role in self.PROVIDER_ROLES and self.status == 'active'

    def __str__(self) -> str:
        return f"{self.full_name} ({self.role})"


class Appointment(models.Model):
    STATUS_SCHEDULED = 'scheduled'
    STATUS_CONFIRMED = 'confirmed'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_NO_SHOW = 'no-show'
    STATUS_CHOICES = [
        (STATUS_SCHEDULED, 'Scheduled'),
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_NO_SHOW, 'No-show'),
    ]
    TYPE_CHOICES = [
        ('initial-consultation', 'Initial consultation'),
        ('follow-up', 'Follow-up'),
        ('procedure', 'Procedure'),
        ('checkup', 'Checkup'),
        ('urgent', 'Urgent'),
        ('telehealth', 'Telehealth'),
        ('other', 'Other'),
    ]

    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='appointments')
    provider = models.ForeignKey(Staff, on_delete=models.CASCADE, related_name='appointments')
    title = models.CharField(max_length=255)
    start_time = models.DateTimeField()
    end_time = models.DateTimeField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_SCHEDULED, db_index=True)
    type = models.CharField(max_length=32, choices=TYPE_CHOICES, default='other')
    notes = models.TextField(blank=True)
    location = models.CharField(max_length=255, blank=True)
    reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'appointments'
        indexes = [
            models.Index(fields=['provider', 'start_time', 'end_time'], name='appt_provider_window_idx'),
            models.Index(fields=['patient', 'start_time'], name='appt_patient_start_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(start_time__lt=models.F('end_time')),
                name='appointment_start_before_end',
            ),
        ]

    def __str__(self) -> str:
        return f"{self.title} (#{self.pk}) {self.start_time:%F %H:%M}~{self.end_time:%H:%M}"


class Invoice(models.Model):
    STATUS_DRAFT = 'draft'
    STATUS_SENT = 'sent'
    STATUS_PAID = 'paid'
    STATUS_OVERDUE = 'overdue'
    STATUS_CANCELLED = 'cancelled'
    STATUS_PARTIALLY_PAID = 'partially_paid'
    STATUS_CHOICES = [
        (STATUS_DRAFT, 'Draft'),
        (STATUS_SENT, 'Sent'),
        (STATUS_PAID, 'Paid'),
        (STATUS_OVERDUE, 'Overdue'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_PARTIALLY_PAID, 'Partially paid'),
    ]
    PAYMENT_METHOD_CHOICES = [
        ('cash', 'Cash'),
        ('credit_card', 'Credit card'),
        ('debit_card', 'Debit card'),
        ('insurance', 'Insurance'),
        ('bank_transfer', 'Bank transfer'),
        ('check', 'Check'),
    ]

    id = models.CharField(max_length=20, primary_key=True, default=new_invoice_id, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='invoices')
    # Reference only: the invoice survives deletion of its appointment.
    appointment = models.ForeignKey(
        Appointment, null=True, blank=True, on_delete=models.SET_NULL, related_name='invoices'
    )
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    balance = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_DRAFT, db_index=True)
    due_date = models.DateField()
    paid_date = models.DateTimeField(null=True, blank=True)
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHOD_CHOICES, blank=True, null=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'invoices'
        indexes = [
            models.Index(fields=['patient', 'created_at'], name='invoice_patient_created_idx'),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount_paid__gte=0), name='invoice_amount_paid_non_negative'),
            models.CheckConstraint(condition=models.Q(balance__gte=0), name='invoice_balance_non_negative'),
        ]

    def __str__(self) -> str:
        return f"{self.id} {self.status} {self.balance}/{self.total_amount}"


class InvoiceItem(models.Model):
    id = models.CharField(max_length=20, primary_key=True, default=new_item_id, editable=False)
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='items')
    position = models.PositiveIntegerField(default=0)
    description = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    service_code = models.CharField(max_length=32, blank=True, null=True)
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)

    class Meta:
        db_table = 'invoice_items'
        ordering = ['position']
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gt=0), name='invoice_item_quantity_positive'),
            models.CheckConstraint(condition=models.Q(unit_price__gte=0), name='invoice_item_price_non_negative'),
        ]

    def __str__(self) -> str:
        return f"{self.description} x{self.quantity}"


class Payment(models.Model):
    id = models.CharField(max_length=20, primary_key=True, default=new_payment_id, editable=False)
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='payments')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=20, choices=Invoice.PAYMENT_METHOD_CHOICES)
    transaction_id = models.CharField(max_length=128, blank=True, null=True)
    notes = models.TextField(blank=True)
    processed_by = models.CharField(max_length=150)
    processed_date = models.DateTimeField()

    class Meta:
        db_table = 'payments'
        indexes = [
            models.Index(fields=['invoice', 'processed_date'], name='payment_invoice_date_idx'),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name='payment_amount_positive'),
        ]

    def __str__(self) -> str:
        return f"{self.id} {self.amount} -> {self.invoice_id}"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.CharField(max_length=64, blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'audit_events'
        indexes = [
            models.Index(fields=['action', 'created_at'], name='audit_action_created_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='audit_object_created_idx'),
        ]

    def __str__(self):
        return f"{self.action}:{self.object_type}/{self.object_id}"
