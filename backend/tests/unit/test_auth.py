import time

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from app.core import auth as auth_module
from app.core.config import settings
from app.models import User

SECRET = "unit-test-jwt-secret"


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    monkeypatch.setattr(settings, "auth_jwt_secret", SECRET)


def make_token(secret=SECRET, **claims):
    payload = {
        "sub": "auth_new_1",
        "email": "new@test.com",
        "name": "New Artist",
        "iat": int(time.time()),
        "exp": int(time.time()) + 3600,
    }
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def bearer(token):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


def test_verify_session_token_returns_claims():
    claims = auth_module.verify_session_token(make_token())
    assert claims["sub"] == "auth_new_1"
    assert claims["email"] == "new@test.com"


def test_verify_session_token_rejects_wrong_secret():
    with pytest.raises(HTTPException) as exc:
        auth_module.verify_session_token(make_token(secret="other-secret"))
    assert exc.value.status_code == 401


def test_verify_session_token_rejects_expired():
    with pytest.raises(HTTPException) as exc:
        auth_module.verify_session_token(make_token(exp=int(time.time()) - 10))
    assert exc.value.status_code == 401


def test_missing_secret_is_server_error(monkeypatch):
    monkeypatch.setattr(settings, "auth_jwt_secret", "")
    with pytest.raises(HTTPException) as exc:
        auth_module.verify_session_token(make_token())
    assert exc.value.status_code == 500


def test_get_current_user_creates_user_on_first_sign_in(db):
    user = auth_module.get_current_user(credentials=bearer(make_token()), db=db)

    assert user.external_auth_id == "auth_new_1"
    assert user.email == "new@test.com"
    assert user.full_name == "New Artist"
    assert user.last_login_at is not None
    assert db.query(User).count() == 1


def test_get_current_user_updates_existing_profile(db, user):
    token = make_token(sub="auth_artist_1", email="renamed@test.com", name="Renamed", picture="https://img/x.png")

    resolved = auth_module.get_current_user(credentials=bearer(token), db=db)

    assert resolved.id == user.id
    assert resolved.email == "renamed@test.com"
    assert resolved.full_name == "Renamed"
    assert resolved.image_url == "https://img/x.png"
    assert db.query(User).count() == 1


def test_get_current_user_requires_credentials(db):
    with pytest.raises(HTTPException) as exc:
        auth_module.get_current_user(credentials=None, db=db)
    assert exc.value.status_code == 401


def test_get_current_user_requires_email_claim(db):
    with pytest.raises(HTTPException) as exc:
        auth_module.get_current_user(credentials=bearer(make_token(email=None)), db=db)
    assert exc.value.status_code == 401


def test_inactive_user_forbidden(db, user):
    user.is_active = False
    db.commit()

    with pytest.raises(HTTPException) as exc:
        auth_module.get_current_user(credentials=bearer(make_token(sub="auth_artist_1", email=user.email)), db=db)
    assert exc.value.status_code == 403
