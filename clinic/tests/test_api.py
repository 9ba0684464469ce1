"""
Integration tests for the scheduling and billing API.

These exercise the HTTP boundary end to end: role checks, the response
envelope, error codes and the ORM-backed store.  They use Django REST
framework's APIClient within the APITestCase base class.
"""
from datetime import date, timedelta
from decimal import Decimal

from django.core.cache import cache
from django.test import override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from ..models import Appointment, AuditEvent, Invoice, InvoiceItem, Patient, Payment, Staff, User


@override_settings(STATS_CACHE_SECONDS=0)
class ClinicAPITests(APITestCase):
    def setUp(self) -> None:
        """Create one login per role, a patient and a doctor."""
        cache.clear()  # throttle counters
        self.users = {
            role: User.objects.create_user(username=role, password='s3cret-pass', role=role)
            for role in ('admin', 'doctor', 'nurse', 'receptionist', 'accountant')
        }
        self.patient = Patient.objects.create(first_name='Ada', last_name='Lovelace')
        self.doctor = Staff.objects.create(
            first_name='Gregory', last_name='House', email='house@example.org', role='doctor',
            user=self.users['doctor'],
        )
        self.nurse = Staff.objects.create(
            first_name='Carla', last_name='Espinosa', email='carla@example.org', role='nurse',
        )
        self.day = (timezone.now() + timedelta(days=2)).replace(hour=0, minute=0, second=0, microsecond=0)

    def as_role(self, role):
        self.client.force_authenticate(user=self.users[role])

    def slot(self, hh, mm, minutes=30):
        start = self.day + timedelta(hours=hh, minutes=mm)
        return start.isoformat(), (start + timedelta(minutes=minutes)).isoformat()

    def book(self, hh, mm, minutes=30, **extra):
        start, end = self.slot(hh, mm, minutes)
        body = {'patientId': self.patient.id, 'providerId': self.doctor.id, 'title': 'Checkup',
                'startTime': start, 'endTime': end}
        body.update(extra)
        return self.client.post('/api/appointments', body, format='json')

    def create_invoice(self, **extra):
        body = {
            'patientId': self.patient.id,
            'dueDate': (date.today() + timedelta(days=30)).isoformat(),
            'items': [
                {'description': 'Consultation', 'quantity': 1, 'unitPrice': '100.00'},
                {'description': 'Blood panel', 'quantity': 1, 'unitPrice': '50.00'},
            ],
        }
        body.update(extra)
        return self.client.post('/api/billing/invoices', body, format='json')

    # ------------------------------------------------------------------
    # Appointments
    # ------------------------------------------------------------------
    def test_unauthenticated_requests_are_rejected(self):
        resp = self.client.get('/api/appointments')
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(resp.data['success'])

    def test_booking_conflict_and_boundary(self):
        self.as_role('receptionist')
        resp = self.book(9, 0)
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertTrue(resp.data['success'])
        self.assertEqual(resp.data['data']['status'], 'scheduled')
        self.assertEqual(resp.data['data']['providerName'], 'Gregory House')
        self.assertEqual(resp.data['data']['patientName'], 'Ada Lovelace')

        resp = self.book(9, 15)
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data['error']['code'], 'conflict')
        self.assertEqual(resp.data['message'], 'This time slot conflicts with another appointment')

        resp = self.book(9, 30)
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Appointment.objects.count(), 2)

    def test_booking_in_the_past_is_a_validation_error(self):
        self.as_role('nurse')
        start = timezone.now() - timedelta(days=1)
        resp = self.client.post('/api/appointments', {
            'patientId': self.patient.id, 'providerId': self.doctor.id, 'title': 'Late',
            'startTime': start.isoformat(), 'endTime': (start + timedelta(hours=1)).isoformat(),
        }, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data['error']['code'], 'validation_error')
        self.assertEqual(Appointment.objects.count(), 0)

    def test_booking_with_a_nurse_as_provider_is_not_found(self):
        self.as_role('admin')
        resp = self.book(9, 0, providerId=self.nurse.id)
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(resp.data['error']['code'], 'not_found')

    def test_malformed_body_is_a_validation_error(self):
        self.as_role('admin')
        resp = self.client.post('/api/appointments', {'title': 'x'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data['error']['code'], 'validation_error')
        self.assertIn('patientId', resp.data['error']['detail'])

    def test_text_fields_are_cleaned(self):
        self.as_role('admin')
        resp = self.book(11, 0, notes='<script>alert(1)</script>bring results')
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertNotIn('<script>', resp.data['data']['notes'])

    def test_update_and_status_lifecycle(self):
        self.as_role('doctor')
        appt_id = self.book(10, 0).data['data']['id']
        start, end = self.slot(10, 0, minutes=60)
        resp = self.client.put(f'/api/appointments/{appt_id}', {'endTime': end, 'status': 'confirmed'},
                               format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data['data']['status'], 'confirmed')

        self.client.put(f'/api/appointments/{appt_id}', {'status': 'completed'}, format='json')
        resp = self.client.put(f'/api/appointments/{appt_id}', {'status': 'scheduled'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(Appointment.objects.get(pk=appt_id).status, 'completed')

    def test_only_doctors_and_admins_delete(self):
        self.as_role('receptionist')
        appt_id = self.book(13, 0).data['data']['id']

        self.as_role('nurse')
        resp = self.client.delete(f'/api/appointments/{appt_id}')
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(resp.data['error']['code'], 'forbidden')

        self.as_role('doctor')
        resp = self.client.delete(f'/api/appointments/{appt_id}')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        resp = self.client.delete(f'/api/appointments/{appt_id}')
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)

    def test_reads(self):
        self.as_role('admin')
        self.book(9, 0, title='Knee review')
        self.book(10, 0, type='follow-up')

        resp = self.client.get('/api/appointments/search', {'q': 'knee'})
        self.assertEqual([a['title'] for a in resp.data['data']], ['Knee review'])

        resp = self.client.get('/api/appointments/upcoming', {'limit': 1})
        self.assertEqual(len(resp.data['data']), 1)

        resp = self.client.get(f'/api/appointments/doctor/{self.doctor.id}')
        self.assertEqual(len(resp.data['data']), 2)
        resp = self.client.get('/api/appointments/doctor/9999')
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)

        resp = self.client.get(f'/api/appointments/patient/{self.patient.id}')
        self.assertEqual(len(resp.data['data']), 2)

        day = self.day.date().isoformat()
        resp = self.client.get('/api/appointments', {'startDate': day, 'endDate': day})
        self.assertEqual(len(resp.data['data']), 2)

        resp = self.client.get('/api/appointments/stats')
        self.assertEqual(resp.data['data']['total'], 2)
        self.assertEqual(resp.data['data']['byType'], {'other': 1, 'follow-up': 1})
        self.assertEqual(resp.data['data']['byDoctor'][0]['count'], 2)

    def test_stats_are_limited_to_admins_and_doctors(self):
        self.as_role('nurse')
        self.assertEqual(self.client.get('/api/appointments/stats').status_code, status.HTTP_403_FORBIDDEN)

    def test_writes_leave_audit_events(self):
        self.as_role('admin')
        appt_id = self.book(9, 0).data['data']['id']
        event = AuditEvent.objects.get(action='appointment_create')
        self.assertEqual(event.object_id, str(appt_id))
        self.assertEqual(event.user, self.users['admin'])

    # ------------------------------------------------------------------
    # Billing
    # ------------------------------------------------------------------
    def test_invoice_payment_flow(self):
        self.as_role('accountant')
        resp = self.create_invoice()
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        invoice = resp.data['data']
        self.assertEqual(invoice['totalAmount'], '150.00')
        self.assertEqual(invoice['balance'], '150.00')
        self.assertEqual(invoice['status'], 'draft')
        self.assertEqual(len(invoice['items']), 2)

        resp = self.client.post('/api/billing/payments',
                                {'invoiceId': invoice['id'], 'amount': '100.00', 'paymentMethod': 'cash'},
                                format='json')
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.data['data']['processedBy'], 'accountant')

        resp = self.client.get(f"/api/billing/invoices/{invoice['id']}")
        self.assertEqual(resp.data['data']['status'], 'partially_paid')
        self.assertEqual(resp.data['data']['balance'], '50.00')

        self.client.post('/api/billing/payments',
                         {'invoiceId': invoice['id'], 'amount': '50.00', 'paymentMethod': 'insurance'},
                         format='json')
        stored = Invoice.objects.get(pk=invoice['id'])
        self.assertEqual(stored.status, Invoice.STATUS_PAID)
        self.assertEqual(stored.balance, Decimal('0.00'))
        self.assertIsNotNone(stored.paid_date)
        self.assertEqual(stored.payment_method, 'insurance')

        resp = self.client.get(f"/api/billing/invoices/{invoice['id']}/payments")
        self.assertEqual([p['amount'] for p in resp.data['data']], ['50.00', '100.00'])

    def test_overpayment_is_rejected(self):
        self.as_role('receptionist')
        invoice_id = self.create_invoice().data['data']['id']
        resp = self.client.post('/api/billing/payments',
                                {'invoiceId': invoice_id, 'amount': '200.00', 'paymentMethod': 'cash'},
                                format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data['message'], 'Payment amount cannot exceed the invoice balance')
        stored = Invoice.objects.get(pk=invoice_id)
        self.assertEqual(stored.balance, Decimal('150.00'))
        self.assertEqual(Payment.objects.count(), 0)

    def test_sent_invoice_cannot_be_deleted(self):
        self.as_role('admin')
        invoice_id = self.create_invoice(status='sent').data['data']['id']
        resp = self.client.delete(f'/api/billing/invoices/{invoice_id}')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        resp = self.client.get(f'/api/billing/invoices/{invoice_id}')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)

    def test_draft_invoice_delete_cascades_and_is_admin_only(self):
        self.as_role('accountant')
        invoice_id = self.create_invoice().data['data']['id']
        resp = self.client.delete(f'/api/billing/invoices/{invoice_id}')
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)

        self.as_role('admin')
        resp = self.client.delete(f'/api/billing/invoices/{invoice_id}')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertFalse(Invoice.objects.filter(pk=invoice_id).exists())
        self.assertFalse(InvoiceItem.objects.filter(invoice_id=invoice_id).exists())
        resp = self.client.get(f'/api/billing/invoices/{invoice_id}')
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)

    def test_doctor_may_read_but_not_write_invoices(self):
        self.as_role('accountant')
        invoice_id = self.create_invoice().data['data']['id']

        self.as_role('doctor')
        self.assertEqual(self.client.get(f'/api/billing/invoices/{invoice_id}').status_code, 200)
        resp = self.client.get(f'/api/billing/patients/{self.patient.id}/invoices')
        self.assertEqual(len(resp.data['data']), 1)
        resp = self.client.put(f'/api/billing/invoices/{invoice_id}', {'notes': 'x'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(self.client.get('/api/billing/invoices').status_code, status.HTTP_403_FORBIDDEN)

    def test_paid_invoice_cannot_be_edited(self):
        self.as_role('admin')
        invoice_id = self.create_invoice().data['data']['id']
        self.client.post('/api/billing/payments',
                         {'invoiceId': invoice_id, 'amount': '150.00', 'paymentMethod': 'cash'}, format='json')
        resp = self.client.put(f'/api/billing/invoices/{invoice_id}', {'notes': 'edit'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data['message'], 'Paid invoices cannot be modified')

    def test_invoice_for_an_appointment_survives_its_deletion(self):
        self.as_role('admin')
        appt_id = self.book(9, 0).data['data']['id']
        invoice_id = self.create_invoice(appointmentId=appt_id).data['data']['id']
        self.client.delete(f'/api/appointments/{appt_id}')
        self.assertIsNone(Invoice.objects.get(pk=invoice_id).appointment_id)

    def test_appointment_link_can_be_removed(self):
        self.as_role('admin')
        appt_id = self.book(9, 0).data['data']['id']
        invoice_id = self.create_invoice(appointmentId=appt_id).data['data']['id']
        resp = self.client.put(f'/api/billing/invoices/{invoice_id}', {'notes': 'kept'}, format='json')
        self.assertEqual(resp.data['data']['appointmentId'], appt_id)

        resp = self.client.put(f'/api/billing/invoices/{invoice_id}', {'appointmentId': None}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertIsNone(resp.data['data']['appointmentId'])
        self.assertIsNone(Invoice.objects.get(pk=invoice_id).appointment_id)
        self.assertTrue(Appointment.objects.filter(pk=appt_id).exists())

    def test_invoice_with_payments_cannot_be_reset_and_deleted(self):
        self.as_role('admin')
        invoice_id = self.create_invoice().data['data']['id']
        self.client.post('/api/billing/payments',
                         {'invoiceId': invoice_id, 'amount': '100.00', 'paymentMethod': 'cash'}, format='json')
        resp = self.client.put(f'/api/billing/invoices/{invoice_id}', {'status': 'draft'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        resp = self.client.delete(f'/api/billing/invoices/{invoice_id}')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(Invoice.objects.get(pk=invoice_id).status, Invoice.STATUS_PARTIALLY_PAID)
        self.assertEqual(Payment.objects.filter(invoice_id=invoice_id).count(), 1)

    def test_billing_stats(self):
        self.as_role('accountant')
        invoice_id = self.create_invoice().data['data']['id']
        self.client.post('/api/billing/payments',
                         {'invoiceId': invoice_id, 'amount': '40.00', 'paymentMethod': 'cash'}, format='json')
        resp = self.client.get('/api/billing/stats')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        data = resp.data['data']
        self.assertEqual(data['totalInvoiced'], '150.00')
        self.assertEqual(data['totalPaid'], '40.00')
        self.assertEqual(data['outstandingBalance'], '110.00')
        self.assertEqual(data['invoicesByStatus'], {'partially_paid': 1})
        self.assertEqual(len(data['recentPayments']), 1)

        self.as_role('receptionist')
        self.assertEqual(self.client.get('/api/billing/stats').status_code, status.HTTP_403_FORBIDDEN)
