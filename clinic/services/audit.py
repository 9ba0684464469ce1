"""Audit trail.  Called inside the caller's transaction so the event commits or rolls back with the change."""
from __future__ import annotations

from typing import Any, Optional

from clinic.models import AuditEvent, User


def log_action(*, user: Optional[User], action: str, object_type: Optional[str] = None,
               object_id: Any = None, detail: Optional[dict[str, Any]] = None) -> AuditEvent:
    # anonymous callers (failed logins, system jobs) are recorded without a user
    actor = user if isinstance(user, User) and user.pk else None
    return AuditEvent.objects.create(
        user=actor,
        action=action,
        object_type=object_type,
        object_id=str(object_id) if object_id is not None else None,
        detail=detail or {},
    )
