import logging

from rest_framework import status
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.views import exception_handler as drf_exception_handler

from clinic.errors import ClinicError
from clinic.responses import error_response

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    'validation_error': status.HTTP_400_BAD_REQUEST,
    'not_found': status.HTTP_404_NOT_FOUND,
    'conflict': status.HTTP_409_CONFLICT,
    'forbidden': status.HTTP_403_FORBIDDEN,
    'internal_error': status.HTTP_500_INTERNAL_SERVER_ERROR,
}

# DRF's own 403/404 render with the same codes as the clinic errors
_CODE_BY_STATUS = {
    status.HTTP_403_FORBIDDEN: 'forbidden',
    status.HTTP_404_NOT_FOUND: 'not_found',
}


def api_exception_handler(exc, context):
    if isinstance(exc, ClinicError):
        code = exc.code if exc.code in STATUS_BY_CODE else 'internal_error'
        if code == 'internal_error':
            logger.error('internal error in %s: %s', _view_name(context), exc.message, exc_info=exc)
        return error_response(exc.message, code, STATUS_BY_CODE[code], exc.detail)

    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception('unhandled error in %s', _view_name(context), exc_info=exc)
        return error_response('Internal Server Error', 'internal_error', status.HTTP_500_INTERNAL_SERVER_ERROR)
    # normalize response
    if isinstance(exc, DRFValidationError):
        return error_response('Validation failed', 'validation_error', resp.status_code, resp.data)
    detail = resp.data.get('detail') if isinstance(resp.data, dict) else resp.data
    code = _CODE_BY_STATUS.get(resp.status_code) or getattr(exc, 'default_code', None) or 'api_error'
    return error_response(str(detail), str(code), resp.status_code)


def _view_name(context) -> str:
    view = (context or {}).get('view')
    return type(view).__name__ if view is not None else '<unknown>'
