import bleach
from rest_framework import serializers

from clinic.models import Appointment
from clinic.patches import AppointmentPatch

STATUS_CHOICES = [c[0] for c in Appointment.STATUS_CHOICES]
TYPE_CHOICES = [c[0] for c in Appointment.TYPE_CHOICES]

# request field -> model attribute
FIELD_MAP = {
    'patientId': 'patient_id',
    'providerId': 'provider_id',
    'title': 'title',
    'startTime': 'start_time',
    'endTime': 'end_time',
    'status': 'status',
    'type': 'type',
    'notes': 'notes',
    'location': 'location',
    'reason': 'reason',
}


def clean_text(v):
    return bleach.clean((v or '').strip(), strip=True)


class _AppointmentFields(serializers.Serializer):
    def validate_title(self, v):
        v = clean_text(v)
        if not v:
            raise serializers.ValidationError('Title is required')
        return v

    def validate_notes(self, v):
        return clean_text(v)

    def validate_location(self, v):
        return clean_text(v)

    def validate_reason(self, v):
        return clean_text(v)

    def to_service_data(self) -> dict:
        return {FIELD_MAP[k]: v for k, v in self.validated_data.items()}


class AppointmentCreateSerializer(_AppointmentFields):
    patientId = serializers.IntegerField(min_value=1)
    providerId = serializers.IntegerField(min_value=1)
    title = serializers.CharField(max_length=255)
    startTime = serializers.DateTimeField()
    endTime = serializers.DateTimeField()
    status = serializers.ChoiceField(choices=STATUS_CHOICES, required=False)
    type = serializers.ChoiceField(choices=TYPE_CHOICES, required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    location = serializers.CharField(max_length=255, required=False, allow_blank=True)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)


class AppointmentUpdateSerializer(_AppointmentFields):
    patientId = serializers.IntegerField(min_value=1, required=False)
    providerId = serializers.IntegerField(min_value=1, required=False)
    title = serializers.CharField(max_length=255, required=False)
    startTime = serializers.DateTimeField(required=False)
    endTime = serializers.DateTimeField(required=False)
    status = serializers.ChoiceField(choices=STATUS_CHOICES, required=False)
    type = serializers.ChoiceField(choices=TYPE_CHOICES, required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    location = serializers.CharField(max_length=255, required=False, allow_blank=True)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)

    def to_patch(self) -> AppointmentPatch:
        return AppointmentPatch(**self.to_service_data())


class AppointmentListQuerySerializer(serializers.Serializer):
    startDate = serializers.DateField(required=False)
    endDate = serializers.DateField(required=False)

    def validate(self, attrs):
        if attrs.get('startDate') and attrs.get('endDate') and attrs['startDate'] > attrs['endDate']:
            raise serializers.ValidationError('startDate must not be after endDate')
        return attrs


class AppointmentSearchQuerySerializer(serializers.Serializer):
    q = serializers.CharField(max_length=64)


class UpcomingQuerySerializer(serializers.Serializer):
    limit = serializers.IntegerField(min_value=1, max_value=100, required=False, default=10)


def format_appointment(appt: Appointment) -> dict:
    return {
        'id': appt.id,
        'patientId': appt.patient_id,
        'patientName': appt.patient.full_name,
        'providerId': appt.provider_id,
        'providerName': appt.provider.full_name,
        'title': appt.title,
        'startTime': appt.start_time.isoformat(),
        'endTime': appt.end_time.isoformat(),
        'status': appt.status,
        'type': appt.type,
        'notes': appt.notes,
        'location': appt.location,
        'reason': appt.reason,
        'createdAt': appt.created_at.isoformat() if appt.created_at else None,
        'updatedAt': appt.updated_at.isoformat() if appt.updated_at else None,
    }
