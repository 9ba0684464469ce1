"""
Django admin registrations.

The directory (patients, staff) has no REST surface; it is maintained
here.  Ledger records are shown read-only so the money columns cannot be
edited around the billing service.
"""

from django.contrib import admin

from .models import (
    Appointment,
    AuditEvent,
    Invoice,
    InvoiceItem,
    Patient,
    Payment,
    Staff,
    User,
)


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'is_staff', 'is_superuser')
    list_filter = ('role',)
    search_fields = ('username', 'first_name', 'last_name')


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ('id', 'first_name', 'last_name', 'date_of_birth', 'contact_number')
    search_fields = ('first_name', 'last_name', 'email', 'contact_number')


@admin.register(Staff)
class StaffAdmin(admin.ModelAdmin):
    list_display = ('id', 'first_name', 'last_name', 'role', 'department', 'status')
    list_filter = ('role', 'status', 'department')
    search_fields = ('first_name', 'last_name', 'email')


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ('id', 'title', 'patient', 'provider', 'start_time', 'end_time', 'status')
    list_filter = ('status', 'type')
    search_fields = ('title', 'patient__last_name', 'provider__last_name')


class InvoiceItemInline(admin.TabularInline):
    model = InvoiceItem
    extra = 0
    can_delete = False
    readonly_fields = ('description', 'quantity', 'unit_price', 'amount', 'service_code', 'tax_rate')


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'total_amount', 'amount_paid', 'balance', 'status', 'due_date')
    list_filter = ('status',)
    search_fields = ('id', 'patient__last_name')
    readonly_fields = ('total_amount', 'amount_paid', 'balance', 'paid_date', 'payment_method')
    inlines = [InvoiceItemInline]


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('id', 'invoice', 'amount', 'payment_method', 'processed_by', 'processed_date')
    list_filter = ('payment_method',)
    search_fields = ('id', 'invoice__id', 'transaction_id')

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'user', 'action', 'object_type', 'object_id')
    list_filter = ('action', 'object_type')
    search_fields = ('object_id', 'user__username')
