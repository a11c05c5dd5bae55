"""
OTP login tests.

Verifies:
- First verification creates a customer profile and returns a working token
- Wrong, reused and superseded codes are rejected
- Repeated failures lock the destination (429)
- Logout revokes the token
"""

import pytest

from passcard.models import OtpChallenge, User
from passcard.services import auth_service


CODE = "123456"


@pytest.fixture
def fixed_code(monkeypatch):
    monkeypatch.setattr(auth_service, "generate_code", lambda: CODE)


def _request(client, destination="+1 555 0100", channel="sms"):
    return client.post("/api/auth/otp/request", json={"channel": channel, "destination": destination})


def _verify(client, code=CODE, destination="+1 555 0100", channel="sms"):
    return client.post(
        "/api/auth/otp/verify",
        json={"channel": channel, "destination": destination, "code": code},
    )


def test_first_login_creates_customer(client, db_session, fixed_code):
    assert _request(client).status_code == 200

    resp = _verify(client)
    assert resp.status_code == 200
    assert resp.json["created"] is True
    assert resp.json["user"]["role"] == "customer"
    assert resp.json["user"]["phone"] == "+15550100"

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {resp.json['token']}"})
    assert me.status_code == 200
    assert me.json["user"]["role"] == "customer"


def test_existing_user_is_reused(client, db_session, fixed_code, make_user):
    user = make_user("staff", email="staff@sgv.test")
    _request(client, "Staff@SGV.test", channel="email")

    resp = _verify(client, destination="staff@sgv.test", channel="email")
    assert resp.json["created"] is False
    assert resp.json["user"]["id"] == user.id
    assert db_session.query(User).count() == 1


def test_code_is_stored_hashed(client, db_session, fixed_code):
    _request(client)
    challenge = db_session.query(OtpChallenge).one()
    assert challenge.code_hash != CODE
    assert auth_service.verify_code(CODE, challenge.code_hash)


def test_wrong_code(client, db_session, fixed_code):
    _request(client)
    resp = _verify(client, code="000000")
    assert resp.status_code == 401
    assert "token" not in resp.json


def test_code_is_single_use(client, db_session, fixed_code):
    _request(client)
    assert _verify(client).status_code == 200
    assert _verify(client).status_code == 401


def test_new_request_supersedes_old_code(client, db_session, monkeypatch):
    codes = iter(["111111", "222222"])
    monkeypatch.setattr(auth_service, "generate_code", lambda: next(codes))

    _request(client)
    _request(client)

    assert _verify(client, code="111111").status_code == 401
    assert _verify(client, code="222222").status_code == 200


@pytest.mark.parametrize(
    "payload",
    [
        {"channel": "fax", "destination": "+15550100"},
        {"channel": "sms", "destination": "call me"},
        {"channel": "email", "destination": "not-an-email"},
        {"channel": "sms"},
    ],
)
def test_request_validation(client, db_session, payload):
    assert client.post("/api/auth/otp/request", json=payload).status_code == 400


def test_lockout_after_repeated_failures(app, client, db_session, fixed_code):
    _request(client)
    for _ in range(app.config["MAX_LOGIN_ATTEMPTS"]):
        assert _verify(client, code="000000").status_code == 401

    resp = _verify(client)
    assert resp.status_code == 429
    assert resp.json["retry_after_minutes"] >= 1

    assert _request(client).status_code == 429


def test_logout_revokes_token(client, db_session, fixed_code):
    _request(client)
    token = _verify(client).json["token"]
    headers = {"Authorization": f"Bearer {token}"}

    assert client.post("/api/auth/logout", headers=headers).json == {"success": True}
    assert client.get("/api/auth/me", headers=headers).status_code == 401
