"""Response envelope shared by every endpoint: ``{success, message, data?}``."""
from __future__ import annotations

from typing import Any, Optional

from rest_framework import status as http
from rest_framework.response import Response


def success_response(message: str, data: Any = None, status: int = http.HTTP_200_OK) -> Response:
    payload: dict[str, Any] = {'success': True, 'message': message}
    if data is not None:
        payload['data'] = data
    return Response(payload, status=status)


def error_response(message: str, code: str, status: int, detail: Optional[Any] = None) -> Response:
    error: dict[str, Any] = {'code': code}
    if detail is not None:
        error['detail'] = detail
    return Response({'success': False, 'message': message, 'error': error}, status=status)
