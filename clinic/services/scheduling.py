"""
Appointment scheduling.

``SchedulingService`` owns the appointment lifecycle: it validates the
time window, checks the provider's calendar for overlaps and enforces the
status state machine.  Every write is one unit of work on the injected
store, taken under the provider lock so that two concurrent bookings for
the same provider cannot both pass the conflict check.

Intervals are half-open, ``[start, end)``: an appointment ending at 09:30
and another starting at 09:30 do not overlap.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from django.conf import settings
from django.utils import timezone

from clinic.errors import ConflictError, NotFoundError, ValidationError
from clinic.models import Appointment
from clinic.patches import AppointmentPatch
from clinic.services.realtime import broadcast_update
from clinic.stores import default_store

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[str, tuple[str, ...]] = {
    Appointment.STATUS_SCHEDULED: (
        Appointment.STATUS_CONFIRMED,
        Appointment.STATUS_CANCELLED,
        Appointment.STATUS_COMPLETED,
        Appointment.STATUS_NO_SHOW,
    ),
    Appointment.STATUS_CONFIRMED: (
        Appointment.STATUS_COMPLETED,
        Appointment.STATUS_CANCELLED,
        Appointment.STATUS_NO_SHOW,
    ),
    Appointment.STATUS_COMPLETED: (),
    Appointment.STATUS_CANCELLED: (),
    Appointment.STATUS_NO_SHOW: (),
}

INITIAL_STATUSES = (Appointment.STATUS_SCHEDULED, Appointment.STATUS_CONFIRMED)

_CREATE_FIELDS = ('title', 'type', 'notes', 'location', 'reason')


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap test."""
    return a_start < b_end and b_start < a_end


def can_transition(current: str, new: str) -> bool:
    """Return True if an appointment may move from ``current`` to ``new``."""
    if current == new:
        return True
    return new in _TRANSITIONS.get(current, ())


class SchedulingService:
    def __init__(self, store=None, publish: Optional[Callable[[str, dict], Any]] = None):
        self.store = store if store is not None else default_store()
        self.publish = publish if publish is not None else broadcast_update

    # ------------------------------------------------------------------
    # Conflict detection
    # ------------------------------------------------------------------
    def check_conflict(self, provider_id: int, start: datetime, end: datetime,
                       exclude_id: Optional[int] = None) -> bool:
        """Return True if ``[start, end)`` collides with a live appointment.

        Cancelled appointments never collide and ``exclude_id`` lets an
        update ignore the appointment being moved.
        """
        return bool(self.store.overlapping_appointments(provider_id, start, end, exclude_id))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create_appointment(self, data: dict[str, Any], *, actor=None,
                           now: Optional[datetime] = None) -> Appointment:
        patient_id = data.get('patient_id')
        provider_id = data.get('provider_id')
        start, end = data.get('start_time'), data.get('end_time')
        status = data.get('status') or Appointment.STATUS_SCHEDULED

        if start is None or end is None:
            raise ValidationError('Start time and end time are required')
        if not self.store.patient_exists(patient_id):
            raise NotFoundError('Patient not found')
        if not self.store.provider_exists(provider_id):
            raise NotFoundError('Provider not found')
        self._validate_window(start, end)
        if not getattr(settings, 'APPOINTMENT_ALLOW_PAST', False):
            if start < (now or timezone.now()):
                raise ValidationError('Cannot schedule appointments in the past')
        if status not in INITIAL_STATUSES:
            raise ValidationError(
                f'New appointments must start as {" or ".join(INITIAL_STATUSES)}',
                detail={'status': status},
            )

        appointment = Appointment(
            patient_id=patient_id,
            provider_id=provider_id,
            start_time=start,
            end_time=end,
            status=status,
            **{f: data[f] for f in _CREATE_FIELDS if data.get(f) is not None},
        )

        with self.store.atomic():
            self.store.lock_provider(provider_id)
            self._ensure_free(provider_id, start, end)
            self.store.add_appointment(appointment)
            self.store.record_audit(
                actor=actor, action='appointment_create', object_type='appointment',
                object_id=appointment.id,
                detail={'providerId': provider_id, 'start': start.isoformat(), 'end': end.isoformat()},
            )
            self._after_commit('appointment.created', appointment)

        logger.info('appointment %s booked for provider %s', appointment.id, provider_id)
        return appointment

    def update_appointment(self, appointment_id: int, patch: AppointmentPatch, *,
                           actor=None) -> Appointment:
        changes = patch.changes()

        current = self.store.get_appointment(appointment_id)
        if current is None:
            raise NotFoundError('Appointment not found')
        if 'patient_id' in changes and not self.store.patient_exists(changes['patient_id']):
            raise NotFoundError('Patient not found')
        if 'provider_id' in changes and not self.store.provider_exists(changes['provider_id']):
            raise NotFoundError('Provider not found')

        with self.store.atomic():
            provider_id = changes.get('provider_id', current.provider_id)
            self.store.lock_provider(provider_id)
            appointment = self.store.get_appointment(appointment_id, for_update=True)
            if appointment is None:
                raise NotFoundError('Appointment not found')

            if 'status' in changes and not can_transition(appointment.status, changes['status']):
                raise ValidationError(
                    f"Cannot change appointment status from {appointment.status} to {changes['status']}",
                    detail={'from': appointment.status, 'to': changes['status']},
                )

            reschedule = any(k in changes for k in ('start_time', 'end_time', 'provider_id'))
            start = changes.get('start_time', appointment.start_time)
            end = changes.get('end_time', appointment.end_time)
            if 'start_time' in changes or 'end_time' in changes:
                self._validate_window(start, end)
            if reschedule and changes.get('status', appointment.status) != Appointment.STATUS_CANCELLED:
                self._ensure_free(provider_id, start, end, exclude_id=appointment_id)

            if changes:
                self.store.update_appointment(appointment, changes)
                self.store.record_audit(
                    actor=actor, action='appointment_update', object_type='appointment',
                    object_id=appointment_id, detail={'fields': sorted(changes)},
                )
                self._after_commit('appointment.updated', appointment)

        logger.info('appointment %s updated (%s)', appointment_id, ', '.join(sorted(changes)) or 'no changes')
        return appointment

    def delete_appointment(self, appointment_id: int, *, actor=None) -> bool:
        with self.store.atomic():
            deleted = self.store.delete_appointment(appointment_id)
            if deleted:
                self.store.record_audit(
                    actor=actor, action='appointment_delete', object_type='appointment',
                    object_id=appointment_id,
                )
                self.store.on_commit(lambda: self.publish('appointment.deleted', {'id': appointment_id}))
        if deleted:
            logger.info('appointment %s deleted', appointment_id)
        return deleted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _validate_window(start: datetime, end: datetime) -> None:
        if start >= end:
            raise ValidationError('End time must be after start time')

    def _ensure_free(self, provider_id: int, start: datetime, end: datetime,
                     exclude_id: Optional[int] = None) -> None:
        clashes = self.store.overlapping_appointments(provider_id, start, end, exclude_id)
        if clashes:
            logger.warning('slot %s-%s for provider %s clashes with %s',
                           start.isoformat(), end.isoformat(), provider_id, [a.id for a in clashes])
            raise ConflictError(detail={'conflictingIds': [a.id for a in clashes]})

    def _after_commit(self, event: str, appointment: Appointment) -> None:
        payload = {
            'id': appointment.id,
            'providerId': appointment.provider_id,
            'status': appointment.status,
        }
        self.store.on_commit(lambda: self.publish(event, payload))
