"""
URL mappings for the clinic API.

Paths carry no trailing slash, matching the front-end client.  Fixed
segments (``search``, ``upcoming``, ``stats``) are listed before the
``<id>`` routes they would otherwise be shadowed by.
"""
from django.urls import include, path

from .auth_views import jwt_refresh_view, login_view
from .views import appointments, billing, health

urlpatterns = [
    path('metrics', include('django_prometheus.urls')),
    path('healthz', health.healthz, name='healthz'),
    # Authentication
    path('api/auth/login', login_view, name='login_view'),
    path('api/auth/refresh', jwt_refresh_view, name='jwt_refresh_view'),
    # Appointments
    path('api/appointments', appointments.appointments, name='appointments'),
    path('api/appointments/search', appointments.search_appointments, name='appointment_search'),
    path('api/appointments/upcoming', appointments.upcoming_appointments, name='appointment_upcoming'),
    path('api/appointments/stats', appointments.appointment_stats, name='appointment_stats'),
    path('api/appointments/doctor/<int:provider_id>', appointments.provider_appointments,
         name='provider_appointments'),
    path('api/appointments/patient/<int:patient_id>', appointments.patient_appointments,
         name='patient_appointments'),
    path('api/appointments/<int:pk>', appointments.appointment_detail, name='appointment_detail'),
    # Billing
    path('api/billing/invoices', billing.invoices, name='invoices'),
    path('api/billing/invoices/<str:invoice_id>', billing.invoice_detail, name='invoice_detail'),
    path('api/billing/invoices/<str:invoice_id>/payments', billing.invoice_payments, name='invoice_payments'),
    path('api/billing/patients/<int:patient_id>/invoices', billing.patient_invoices, name='patient_invoices'),
    path('api/billing/payments', billing.record_payment, name='record_payment'),
    path('api/billing/stats', billing.billing_stats, name='billing_stats'),
]
