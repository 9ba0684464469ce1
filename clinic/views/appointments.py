"""
Appointment endpoints.

Writes go through :class:`clinic.services.scheduling.SchedulingService`,
which validates the window, checks the provider's calendar and enforces
the status lifecycle.  Reads come straight from the ORM via
:mod:`clinic.services.queries`.  Clinical staff (doctors, nurses,
administrators and receptionists) may read and book; only doctors and
administrators may delete, and statistics are limited to doctors and
administrators.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes

from clinic.errors import NotFoundError
from clinic.permissions import (
    CanDeleteAppointments,
    CanViewAppointmentStats,
    IsClinicalStaff,
    require_role,
)
from clinic.responses import success_response
from clinic.serializers.appointments import (
    AppointmentCreateSerializer,
    AppointmentListQuerySerializer,
    AppointmentSearchQuerySerializer,
    AppointmentUpdateSerializer,
    UpcomingQuerySerializer,
    format_appointment,
)
from clinic.services import queries
from clinic.services.scheduling import SchedulingService


def _service() -> SchedulingService:
    return SchedulingService()


@api_view(['GET', 'POST'])
@permission_classes([IsClinicalStaff])
def appointments(request):
    """GET: list appointments, optionally between ``startDate`` and ``endDate``.
    POST: book a new appointment."""
    if request.method == 'POST':
        s = AppointmentCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        appt = _service().create_appointment(s.to_service_data(), actor=request.user)
        appt = queries.get_appointment(appt.id)
        return success_response('Appointment created successfully', format_appointment(appt),
                                status=status.HTTP_201_CREATED)

    q = AppointmentListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = queries.list_appointments(q.validated_data.get('startDate'), q.validated_data.get('endDate'))
    return success_response('Appointments retrieved successfully', [format_appointment(a) for a in qs])


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsClinicalStaff])
def appointment_detail(request, pk: int):
    if request.method == 'GET':
        return success_response('Appointment retrieved successfully',
                                format_appointment(queries.get_appointment(pk)))

    if request.method == 'PUT':
        s = AppointmentUpdateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        _service().update_appointment(pk, s.to_patch(), actor=request.user)
        return success_response('Appointment updated successfully',
                                format_appointment(queries.get_appointment(pk)))

    require_role(request, CanDeleteAppointments)
    if not _service().delete_appointment(pk, actor=request.user):
        raise NotFoundError('Appointment not found')
    return success_response('Appointment deleted successfully')


@api_view(['GET'])
@permission_classes([IsClinicalStaff])
def search_appointments(request):
    q = AppointmentSearchQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = queries.search_appointments(q.validated_data['q'])
    return success_response('Search completed successfully', [format_appointment(a) for a in qs])


@api_view(['GET'])
@permission_classes([IsClinicalStaff])
def upcoming_appointments(request):
    q = UpcomingQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = queries.upcoming_appointments(q.validated_data['limit'])
    return success_response('Upcoming appointments retrieved successfully',
                            [format_appointment(a) for a in qs])


@api_view(['GET'])
@permission_classes([CanViewAppointmentStats])
def appointment_stats(request):
    return success_response('Appointment statistics retrieved successfully', queries.appointment_stats())


@api_view(['GET'])
@permission_classes([IsClinicalStaff])
def provider_appointments(request, provider_id: int):
    qs = queries.appointments_for_provider(provider_id)
    return success_response('Appointments retrieved successfully', [format_appointment(a) for a in qs])


@api_view(['GET'])
@permission_classes([IsClinicalStaff])
def patient_appointments(request, patient_id: int):
    qs = queries.appointments_for_patient(patient_id)
    return success_response('Appointments retrieved successfully', [format_appointment(a) for a in qs])
