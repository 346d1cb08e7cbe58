"""Tests for authentication endpoints."""

from unittest.mock import patch

import jwt
import pytest

from app.services import auth as auth_module
from tests.conftest import TEST_PASSWORD, audit_events, bearer

pytestmark = pytest.mark.asyncio


async def _register(async_client, email="new@example.com", name="New User", password=TEST_PASSWORD):
    return await async_client.post(
        "/auth/register",
        json={"name": name, "email": email, "password": password},
    )


async def _login(async_client, email="user@example.com", password=TEST_PASSWORD):
    return await async_client.post("/auth/login", json={"email": email, "password": password})


# --- Registration and email verification ---


async def test_register_creates_unverified_student(async_client, fake_mailer, session_factory):
    """Test registration creates a Student and mails a verification code."""
    response = await _register(async_client)

    assert response.status_code == 201
    user = response.json()["user"]
    assert user["email"] == "new@example.com"
    assert user["role"] == "Student"
    assert user["is_email_verified"] is False
    assert user["mfa_enabled"] is False
    assert "password_hash" not in user
    assert "otp_code" not in user

    assert fake_mailer.last_code("new@example.com")
    assert len(await audit_events(session_factory, "USER_REGISTERED")) == 1
    assert len(await audit_events(session_factory, "OTP_SENT")) == 1


async def test_register_normalizes_email(async_client):
    response = await _register(async_client, email="Mixed@Example.COM")

    assert response.status_code == 201
    assert response.json()["user"]["email"] == "mixed@example.com"


async def test_register_duplicate_email_conflicts(async_client):
    """Test registering the same email twice fails with 409."""
    assert (await _register(async_client)).status_code == 201

    response = await _register(async_client, email="NEW@example.com", name="Someone Else")

    assert response.status_code == 409
    assert response.json()["detail"] == "Email already in use"


async def test_register_validates_input(async_client):
    assert (await _register(async_client, email="not-an-email")).status_code == 422
    assert (await _register(async_client, password="short")).status_code == 422


async def test_verify_otp_signs_user_in(async_client, fake_mailer, session_factory):
    """Test the full register, verify, profile scenario."""
    register = await _register(async_client)
    user_id = register.json()["user"]["id"]
    code = fake_mailer.last_code("new@example.com")

    response = await async_client.post(
        "/auth/verify-otp", json={"email": "new@example.com", "otp": code}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Email verified successfully"
    assert data["user"]["is_email_verified"] is True
    claims = jwt.decode(data["token"], options={"verify_signature": False})
    assert claims["sub"] == user_id

    me = await async_client.get("/auth/me", headers=bearer(data["token"]))
    assert me.status_code == 200
    assert me.json()["id"] == user_id

    assert fake_mailer.sent[-1].subject.endswith("email verified")
    assert len(await audit_events(session_factory, "EMAIL_VERIFIED")) == 1


async def test_verify_otp_accepts_camel_case_field(async_client, fake_mailer):
    await _register(async_client)
    code = fake_mailer.last_code("new@example.com")

    response = await async_client.post(
        "/auth/verify-otp", json={"email": "new@example.com", "otpCode": code}
    )

    assert response.status_code == 200


async def test_verify_otp_code_is_single_use(async_client, fake_mailer):
    await _register(async_client)
    code = fake_mailer.last_code("new@example.com")
    body = {"email": "new@example.com", "otp": code}

    assert (await async_client.post("/auth/verify-otp", json=body)).status_code == 200

    response = await async_client.post("/auth/verify-otp", json=body)
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired OTP"


async def test_verify_otp_wrong_code(async_client, fake_mailer, session_factory):
    await _register(async_client)
    code = fake_mailer.last_code("new@example.com")
    wrong = "111111" if code != "111111" else "222222"

    response = await async_client.post(
        "/auth/verify-otp", json={"email": "new@example.com", "otp": wrong}
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired OTP"
    assert len(await audit_events(session_factory, "OTP_VERIFY_FAILED")) == 1


async def test_verify_otp_unknown_email(async_client):
    response = await async_client.post(
        "/auth/verify-otp", json={"email": "nobody@example.com", "otp": "123456"}
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired OTP"


async def test_send_otp_replaces_pending_code(async_client, fake_mailer):
    await _register(async_client)
    first = fake_mailer.last_code("new@example.com")

    response = await async_client.post("/auth/send-otp", json={"email": "new@example.com"})
    assert response.status_code == 200
    second = fake_mailer.last_code("new@example.com")

    if first != second:
        stale = await async_client.post(
            "/auth/verify-otp", json={"email": "new@example.com", "otp": first}
        )
        assert stale.status_code == 401
    fresh = await async_client.post(
        "/auth/verify-otp", json={"email": "new@example.com", "otp": second}
    )
    assert fresh.status_code == 200


async def test_send_otp_unknown_email_looks_successful(async_client, fake_mailer):
    response = await async_client.post("/auth/send-otp", json={"email": "nobody@example.com"})

    assert response.status_code == 200
    assert fake_mailer.sent == []


async def test_send_otp_already_verified(async_client, verified_user):
    response = await async_client.post("/auth/send-otp", json={"email": verified_user.email})

    assert response.status_code == 400
    assert response.json()["detail"] == "Email is already verified"


async def test_resend_otp_too_soon_is_rate_limited(async_client, fake_mailer):
    await _register(async_client)

    response = await async_client.post("/auth/resend-otp", json={"email": "new@example.com"})

    assert response.status_code == 429
    assert len(fake_mailer.sent) == 1


async def test_otp_status(async_client):
    await _register(async_client)

    response = await async_client.get("/auth/otp-status/new@example.com")
    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is True
    assert data["expiresAt"] is not None

    unknown = await async_client.get("/auth/otp-status/nobody@example.com")
    assert unknown.json() == {"valid": False, "expiresAt": None}


# --- Login ---


async def test_login_success(async_client, verified_user, session_factory):
    """Test successful login returns a token pair for the user."""
    response = await _login(async_client)

    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["expires_in"] == 3600
    assert data["user"]["email"] == verified_user.email
    claims = jwt.decode(data["access_token"], options={"verify_signature": False})
    assert claims["sub"] == str(verified_user.id)
    assert claims["role"] == "Student"
    assert claims["type"] == "access"

    assert len(await audit_events(session_factory, "LOGIN_SUCCESS")) == 1


async def test_login_email_is_case_insensitive(async_client, verified_user):
    response = await _login(async_client, email="USER@Example.com")

    assert response.status_code == 200


async def test_login_wrong_password(async_client, verified_user, session_factory):
    """Test login fails with wrong password."""
    response = await _login(async_client, password="wrong-password")

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"
    failures = await audit_events(session_factory, "LOGIN_FAILED")
    assert failures[0].details["reason"] == "INVALID_PASSWORD"
    assert failures[0].user_id == verified_user.id


async def test_login_unknown_email_is_indistinguishable(async_client, session_factory):
    """Test login for an unknown email fails exactly like a wrong password."""
    response = await _login(async_client, email="nobody@example.com")

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"
    failures = await audit_events(session_factory, "LOGIN_FAILED")
    assert failures[0].details["reason"] == "USER_NOT_FOUND"
    assert failures[0].user_id is None


async def test_login_failure_paths_do_equal_hashing_work(async_client, verified_user):
    """Test unknown email and wrong password each cost exactly one argon2 verify."""
    costs = {}
    for label, email in (("known", verified_user.email), ("unknown", "nobody@example.com")):
        with patch.object(auth_module, "ph", wraps=auth_module.ph) as spy:
            response = await _login(async_client, email=email, password="wrong-password")

        assert response.status_code == 401
        costs[label] = (spy.hash.call_count, spy.verify.call_count)

    assert costs["known"] == costs["unknown"] == (0, 1)


async def test_login_unverified_email(async_client, user_factory):
    await user_factory(is_email_verified=False)

    response = await _login(async_client)

    assert response.status_code == 401
    assert response.json()["detail"] == "Email not verified"


async def test_login_rate_limited_after_failures(async_client, verified_user, test_settings):
    """Test repeated failures from one IP are throttled."""
    for _ in range(test_settings.login_rate_limit_attempts):
        response = await _login(async_client, password="wrong-password")
        assert response.status_code == 401

    response = await _login(async_client)

    assert response.status_code == 429


# --- Refresh ---


async def test_refresh_returns_new_pair(async_client, verified_user):
    tokens = (await _login(async_client)).json()

    response = await async_client.post(
        "/auth/refresh", json={"refreshToken": tokens["refresh_token"]}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["access_token"] != tokens["access_token"]
    assert data["user"]["id"] == str(verified_user.id)
    me = await async_client.get("/auth/me", headers=bearer(data["access_token"]))
    assert me.status_code == 200


async def test_refresh_rejects_access_token(async_client, verified_user):
    tokens = (await _login(async_client)).json()

    response = await async_client.post(
        "/auth/refresh", json={"refresh_token": tokens["access_token"]}
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired token"


# --- Logout ---


async def test_logout_revokes_tokens(async_client, verified_user, session_factory):
    """Test the login, logout, reuse scenario."""
    tokens = (await _login(async_client)).json()
    headers = bearer(tokens["access_token"])

    response = await async_client.post(
        "/auth/logout", headers=headers, json={"refreshToken": tokens["refresh_token"]}
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Logged out successfully"

    me = await async_client.get("/auth/me", headers=headers)
    assert me.status_code == 401
    assert me.json()["detail"] == "Session expired. Please sign in again."

    refresh = await async_client.post(
        "/auth/refresh", json={"refreshToken": tokens["refresh_token"]}
    )
    assert refresh.status_code == 401
    assert refresh.json()["detail"] == "Invalid or expired token"

    assert len(await audit_events(session_factory, "LOGOUT")) == 1
    assert len(await audit_events(session_factory, "TOKEN_BLACKLISTED")) == 2
    denied = await audit_events(session_factory, "UNAUTHORIZED_ACCESS")
    assert denied[0].details["reason"] == "BLACKLISTED_TOKEN"


async def test_logout_leaves_other_sessions_alone(async_client, verified_user):
    first = (await _login(async_client)).json()
    second = (await _login(async_client)).json()

    await async_client.post("/auth/logout", headers=bearer(first["access_token"]))

    me = await async_client.get("/auth/me", headers=bearer(second["access_token"]))
    assert me.status_code == 200


async def test_logout_without_credentials_is_noop(async_client):
    response = await async_client.post("/auth/logout")

    assert response.status_code == 200


async def test_logout_with_bad_token_is_rejected(async_client):
    response = await async_client.post("/auth/logout", headers=bearer("garbage"))

    assert response.status_code == 401


async def test_logout_ignores_foreign_refresh_token(async_client, verified_user, user_factory):
    await user_factory(email="other@example.com")
    mine = (await _login(async_client)).json()
    theirs = (await _login(async_client, email="other@example.com")).json()

    await async_client.post(
        "/auth/logout",
        headers=bearer(mine["access_token"]),
        json={"refreshToken": theirs["refresh_token"]},
    )

    response = await async_client.post(
        "/auth/refresh", json={"refreshToken": theirs["refresh_token"]}
    )
    assert response.status_code == 200


# --- Password reset ---


async def test_password_reset_flow(async_client, verified_user, fake_mailer, session_factory):
    response = await async_client.post("/auth/forgot-password", json={"email": verified_user.email})
    assert response.status_code == 200
    code = fake_mailer.last_code(verified_user.email)

    response = await async_client.post(
        "/auth/reset-password",
        json={"email": verified_user.email, "otpCode": code, "newPassword": "a-brand-new-password"},
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Password reset successfully"

    assert (await _login(async_client)).status_code == 401
    assert (await _login(async_client, password="a-brand-new-password")).status_code == 200
    assert len(await audit_events(session_factory, "PASSWORD_RESET_COMPLETED")) == 1


async def test_password_reset_code_is_single_use(async_client, verified_user, fake_mailer):
    await async_client.post("/auth/forgot-password", json={"email": verified_user.email})
    code = fake_mailer.last_code(verified_user.email)
    body = {"email": verified_user.email, "otp_code": code, "new_password": "a-brand-new-password"}

    assert (await async_client.post("/auth/reset-password", json=body)).status_code == 200

    body["new_password"] = "yet-another-password"
    response = await async_client.post("/auth/reset-password", json=body)
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired OTP"


async def test_forgot_password_unknown_email_looks_successful(async_client, fake_mailer):
    response = await async_client.post("/auth/forgot-password", json={"email": "nobody@example.com"})

    assert response.status_code == 200
    assert fake_mailer.sent == []


async def test_verification_code_cannot_reset_password(async_client, fake_mailer):
    await _register(async_client)
    code = fake_mailer.last_code("new@example.com")

    response = await async_client.post(
        "/auth/reset-password",
        json={"email": "new@example.com", "otpCode": code, "newPassword": "a-brand-new-password"},
    )

    assert response.status_code == 401


# --- Profile ---


async def test_me_returns_profile(async_client, verified_user, user_headers):
    response = await async_client.get("/auth/me", headers=user_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["id"] == str(verified_user.id)
    assert data["name"] == "Test User"
    assert "mfa_secret" not in data
