from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

import errors
from schemas import Role, SessionUser
from security import (
    create_session_token,
    decode_session_token,
    hash_password,
    require_role,
    verify_password,
)

pytestmark = pytest.mark.unit


def _session(role=Role.USER):
    return SessionUser(id="65a000000000000000000001", name="Alice A", email="alice@x.com", role=role)


def test_hash_and_verify_password():
    hashed = hash_password("Passw0rd!", rounds=4)

    assert hashed.startswith("$2b$04$")
    assert verify_password("Passw0rd!", hashed)
    assert not verify_password("passw0rd!", hashed)


def test_verify_password_rejects_non_bcrypt_values():
    assert not verify_password("anything", "")
    assert not verify_password("anything", "not-a-hash")


def test_default_cost_factor_is_twelve():
    assert hash_password("x").startswith("$2b$12$")


def test_session_token_round_trip(settings):
    token, exp = create_session_token(_session(Role.ADMIN), settings)

    session = decode_session_token(token, settings)

    assert session == _session(Role.ADMIN)
    assert exp > datetime.now(timezone.utc).timestamp()


def test_tampered_token_rejected(settings):
    token, _ = create_session_token(_session(), settings)
    forged = jwt.encode(
        dict(jwt.decode(token, options={"verify_signature": False}), role="ADMIN"),
        "another-secret",
        algorithm="HS256",
    )

    with pytest.raises(errors.Unauthorized):
        decode_session_token(forged, settings)


def test_expired_token_rejected(settings):
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    token = jwt.encode(
        {
            "sub": "65a000000000000000000001",
            "id": "65a000000000000000000001",
            "role": "USER",
            "exp": int(past.timestamp()),
        },
        settings.session_secret,
        algorithm="HS256",
    )

    with pytest.raises(errors.Unauthorized) as exc_info:
        decode_session_token(token, settings)
    assert exc_info.value.detail == "Session expired"


def test_require_role_checks(settings):
    app = FastAPI()
    app.state.settings = settings
    errors.register_exception_handlers(app)

    @app.get("/admin")
    def admin_only(_: SessionUser = Depends(require_role(Role.ADMIN))):
        return {"ok": True}

    client = TestClient(app)
    admin_token, _ = create_session_token(_session(Role.ADMIN), settings)
    user_token, _ = create_session_token(_session(Role.USER), settings)

    assert client.get("/admin").status_code == 401
    assert client.get("/admin", headers={"Authorization": f"Bearer {user_token}"}).status_code == 401
    response = client.get("/admin", headers={"Authorization": f"Bearer {admin_token}"})
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_session_cookie_accepted(settings):
    app = FastAPI()
    app.state.settings = settings
    errors.register_exception_handlers(app)

    @app.get("/me")
    def me(session: SessionUser = Depends(require_role(Role.USER, Role.ADMIN))):
        return {"id": session.id}

    token, _ = create_session_token(_session(), settings)
    client = TestClient(app)
    client.cookies.set(settings.session_cookie_name, token)

    assert client.get("/me").json() == {"id": "65a000000000000000000001"}
