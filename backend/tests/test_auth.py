# backend/tests/test_auth.py
#
# Login exchange, the session cookie window and logout.

import time

import pytest

from clinic.main import app
from clinic.security import get_cognito_user_info
from clinic.session import DEACTIVATED_MESSAGE, EXPIRED_MESSAGE, SESSION_COOKIE
from clinic.timeutils import now_ms
from conftest import make_user

NURSE = make_user("nur-1", 'nurse', "Rosa Díaz")


@pytest.fixture
def cognito_claims():
    app.dependency_overrides[get_cognito_user_info] = lambda: {"sub": NURSE['id'], "email": NURSE['email']}
    yield
    app.dependency_overrides.pop(get_cognito_user_info, None)


def test_login_returns_token_and_starts_session(client, tables, cognito_claims):
    # Arrange
    tables['users'].items[NURSE['id']] = dict(NURSE)

    # Act
    response = client.post("/auth/login")

    # Assert
    assert response.status_code == 200
    body = response.json()
    assert body['api_token']
    assert body['user_profile']['role'] == 'nurse'
    assert body['expiresInMs'] == 90 * 60 * 1000
    assert f"{SESSION_COOKIE}={body['sessionStart']}" in response.headers['set-cookie']
    assert "SameSite=strict" in response.headers['set-cookie']


def test_login_without_profile_is_unauthorized(client, tables, cognito_claims):
    response = client.post("/auth/login")
    assert response.status_code == 401


def test_login_of_deactivated_account(client, tables, cognito_claims):
    tables['users'].items[NURSE['id']] = dict(NURSE, isActive=False)

    response = client.post("/auth/login")

    assert response.status_code == 401
    assert response.json()['detail'] == DEACTIVATED_MESSAGE


def test_login_without_authorizer_context(client, tables):
    response = client.post("/auth/login")
    assert response.status_code == 401


def test_session_without_cookie_starts_new_window(client, login_as, tables):
    login_as(NURSE)

    response = client.get("/auth/session")

    assert response.status_code == 200
    assert response.json()['expiresInMs'] == 90 * 60 * 1000
    assert SESSION_COOKIE in response.headers['set-cookie']


def test_session_reports_remaining_time(client, login_as, tables):
    login_as(NURSE)
    start = now_ms() - 30 * 60 * 1000

    response = client.get("/auth/session", headers={"Cookie": f"{SESSION_COOKIE}={start}"})

    assert response.status_code == 200
    assert response.json()['sessionStart'] == start
    assert 59 * 60 * 1000 < response.json()['expiresInMs'] <= 60 * 60 * 1000


def test_expired_session_is_rejected_and_cookie_cleared(client, login_as, tables):
    login_as(NURSE)
    start = now_ms() - 91 * 60 * 1000

    response = client.get("/auth/session", headers={"Cookie": f"{SESSION_COOKIE}={start}"})

    assert response.status_code == 401
    assert response.json()['detail'] == EXPIRED_MESSAGE
    assert "Max-Age=0" in response.headers['set-cookie']


def test_logout_revokes_earlier_tokens(client, login_as, tables):
    # Arrange
    tables['users'].items[NURSE['id']] = dict(NURSE)
    login_as(NURSE)
    before = time.time()

    # Act
    response = client.post("/auth/logout")

    # Assert
    assert response.status_code == 200
    assert tables['users'].items[NURSE['id']]['sessionRevokedAt'] >= before
