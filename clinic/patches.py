"""
Typed partial updates.

Each patch lists exactly the fields a caller may change on an existing
record.  ``None`` means "leave unchanged"; text fields are cleared with an
empty string and an invoice drops its appointment with ``clear_appointment``.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional


class _Patch:
    def changes(self) -> dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in dataclasses.fields(self)  # type: ignore[arg-type]
            if getattr(self, f.name) is not None
        }

    def __bool__(self) -> bool:
        return bool(self.changes())


@dataclass
class AppointmentPatch(_Patch):
    patient_id: Optional[int] = None
    provider_id: Optional[int] = None
    title: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    status: Optional[str] = None
    type: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class InvoicePatch(_Patch):
    patient_id: Optional[int] = None
    appointment_id: Optional[int] = None
    status: Optional[str] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    clear_appointment: bool = False

    def changes(self) -> dict[str, Any]:
        changes = super().changes()
        del changes['clear_appointment']
        if self.clear_appointment:
            changes['appointment_id'] = None
        return changes
