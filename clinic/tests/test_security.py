import pytest
from django.urls import reverse
from rest_framework.test import APIClient

from clinic.models import AuditEvent, User

pytestmark = pytest.mark.django_db


def login(client, username, password):
    return client.post(reverse('login_view'), {'username': username, 'password': password}, format='json')


def test_login_returns_jwt_and_legacy_token():
    client = APIClient()
    User.objects.create_user(username='u_jwt', password='P@ssw0rd1', role='accountant')
    r = login(client, 'u_jwt', 'P@ssw0rd1')
    assert r.status_code == 200
    assert r.data['success'] is True
    data = r.data['data']
    assert data['token'] and data['jwtAccess'] and data['jwtRefresh']
    assert data['user']['role'] == 'accountant'


def test_no_role_escalation_through_login():
    client = APIClient()
    u = User.objects.create_user(username='u1', password='P@ssw0rd1', role='nurse')
    r = client.post(reverse('login_view'), {'username': 'u1', 'password': 'P@ssw0rd1', 'role': 'admin'},
                    format='json')
    assert r.status_code == 200
    u.refresh_from_db()
    assert u.role == 'nurse'
    assert r.data['data']['user']['role'] == 'nurse'


def test_bad_password_is_rejected_and_audited():
    client = APIClient()
    User.objects.create_user(username='u2', password='P@ssw0rd1')
    r = login(client, 'u2', 'wrong')
    assert r.status_code == 400
    assert r.data['success'] is False
    assert r.data['error']['code'] == 'invalid_credentials'
    assert AuditEvent.objects.filter(action='login', detail__result='fail').count() == 1


def test_both_token_kinds_authenticate():
    client = APIClient()
    User.objects.create_user(username='rcpt', password='P@ssw0rd1', role='receptionist')
    data = login(client, 'rcpt', 'P@ssw0rd1').data['data']

    client.credentials(HTTP_AUTHORIZATION=f"Token {data['token']}")
    assert client.get('/api/appointments').status_code == 200

    client.credentials(HTTP_AUTHORIZATION=f"Bearer {data['jwtAccess']}")
    assert client.get('/api/appointments').status_code == 200

    client.credentials(HTTP_AUTHORIZATION='Token not-a-real-token')
    r = client.get('/api/appointments')
    assert r.status_code == 401
    assert r.data['success'] is False


def test_jwt_refresh():
    client = APIClient()
    User.objects.create_user(username='acct', password='P@ssw0rd1', role='accountant')
    refresh = login(client, 'acct', 'P@ssw0rd1').data['data']['jwtRefresh']
    r = client.post(reverse('jwt_refresh_view'), {'refresh': refresh}, format='json')
    assert r.status_code == 200
    assert r.data['data']['jwtAccess']

    r = client.post(reverse('jwt_refresh_view'), {'refresh': 'garbage'}, format='json')
    assert r.status_code == 401


def test_role_without_access_gets_forbidden_envelope():
    client = APIClient()
    user = User.objects.create_user(username='acct2', password='P@ssw0rd1', role='accountant')
    client.force_authenticate(user=user)
    r = client.get('/api/appointments')
    assert r.status_code == 403
    assert r.data['error']['code'] == 'forbidden'


def test_health_probe():
    client = APIClient()
    r = client.get(reverse('healthz'))
    assert r.status_code == 200
    assert r.json()['data']['db'] is True
