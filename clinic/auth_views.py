"""
Login and token refresh endpoints.

Login hands out both a DRF token (``Authorization: Token <key>``) and a
simplejwt pair; either one authenticates the API.  Failed attempts are audited
with the caller address.
"""
from __future__ import annotations

import logging

from rest_framework.authtoken.models import Token
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.views import TokenRefreshView

from clinic.responses import error_response, success_response
from clinic.serializers.auth import LoginSerializer
from clinic.services.audit import log_action

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# Username/password login
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
def login_view(request):
    s = LoginSerializer(data=request.data, context={'request': request})
    s.is_valid(raise_exception=True)
    username = s.validated_data['username']
    user = s.validated_data['user']
    if not user:
        log_action(user=None, action='login', object_type='user', object_id=None,
                   detail={'result': 'fail', 'username': username, 'ip': request.META.get('REMOTE_ADDR')})
        logger.info('failed login for %s', username)
        return error_response('Invalid username or password', 'invalid_credentials', 400)

    log_action(user=user, action='login', object_type='user', object_id=user.id,
               detail={'result': 'ok', 'ip': request.META.get('REMOTE_ADDR')})

    token_obj, _ = Token.objects.get_or_create(user=user)
    refresh = RefreshToken.for_user(user)

    return success_response('Login successful', {
        'token': token_obj.key,
        'jwtAccess': str(refresh.access_token),
        'jwtRefresh': str(refresh),
        'user': {
            'id': user.id,
            'username': user.username,
            'name': user.get_full_name() or user.username,
            'role': user.role,
        },
    })

# DRF ScopedRateThrottle uses throttle_scope on the view function
login_view.throttle_scope = 'login'


# ---------------------------------------------------------------------
# JWT refresh
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
def jwt_refresh_view(request):
    """Return a new access token for a refresh token."""
    view = TokenRefreshView.as_view()
    resp = view(request._request)
    if isinstance(resp, Response) and resp.status_code == 200:
        data = {'jwtAccess': resp.data['access']}
        if 'refresh' in resp.data:
            data['jwtRefresh'] = resp.data['refresh']
        return success_response('Token refreshed', data)
    return resp
