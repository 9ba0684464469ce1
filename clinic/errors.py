"""
Typed errors raised by the scheduling and billing services.

Every error carries a stable ``code`` discriminant.  The HTTP boundary
(:func:`clinic.exceptions.api_exception_handler`) maps the code to a status;
nothing upstream inspects the message text.
"""
from __future__ import annotations

from typing import Any, Optional


class ClinicError(Exception):
    code = 'internal_error'
    default_message = 'Internal Server Error'

    def __init__(self, message: Optional[str] = None, *, detail: Optional[Any] = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class ValidationError(ClinicError):
    """Malformed or policy-violating input."""
    code = 'validation_error'
    default_message = 'Invalid request'


class NotFoundError(ClinicError):
    """A referenced entity does not exist."""
    code = 'not_found'
    default_message = 'Not found'


class ConflictError(ClinicError):
    """The requested slot overlaps another appointment of the same provider."""
    code = 'conflict'
    default_message = 'This time slot conflicts with another appointment'


class AuthorizationError(ClinicError):
    code = 'forbidden'
    default_message = 'Permission denied'


class InternalError(ClinicError):
    """Unexpected failure, typically from the persistence layer."""
    code = 'internal_error'


__all__ = [
    'ClinicError',
    'ValidationError',
    'NotFoundError',
    'ConflictError',
    'AuthorizationError',
    'InternalError',
]
