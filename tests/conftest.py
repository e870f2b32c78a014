"""
Shared fixtures: explicit settings, an in-memory Mongo client injected through
MongoContext, a TestClient bound to a fresh app, and seeded accounts.
"""

from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import accounts
from config import Settings
from database import ASSETS, MongoContext, create_document
from main import create_app
from schemas import Asset, AssetStatus, Role, UserStatus
from security import create_session_token

PASSWORD = "Passw0rd!"


def pytest_configure(config) -> None:
    config.addinivalue_line("markers", "unit: Unit tests (fast, no external dependencies)")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        MONGODB_URI="mongodb://localhost:27017",
        MONGODB_DB="asset_tracker_test",
        SESSION_SECRET="test-secret",
        PUBLIC_BASE_URL="http://testserver",
        BCRYPT_ROUNDS=4,
        UPLOAD_DIR=str(tmp_path / "uploads"),
        _env_file=None,
    )


@pytest.fixture
def mongo(settings):
    context = MongoContext.from_settings(
        settings, client_factory=lambda uri, **_: mongomock.MongoClient(tz_aware=True)
    )
    yield context
    context.close()


@pytest.fixture
def db(mongo):
    return mongo.db


@pytest.fixture
def app(settings, mongo):
    return create_app(settings=settings, mongo=mongo)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def make_user(db, username, role=Role.USER, status=UserStatus.ACTIVE, password=PASSWORD):
    return accounts.create_user(
        db,
        username=username,
        password=password,
        email=f"{username}@example.com",
        full_name=username.title(),
        department="IT",
        role=role,
        status=status,
        rounds=4,
    )


def auth_headers(user, settings):
    token, _ = create_session_token(accounts.session_for(user), settings)
    return {"Authorization": f"Bearer {token}"}


def make_asset(db, code="LT001", status=AssetStatus.AVAILABLE, purchase_date="2023-01-15", **extra):
    fields = {
        "code": code,
        "name": f"Asset {code}",
        "type": "Laptop",
        "status": status,
        "purchase_date": datetime.fromisoformat(purchase_date).replace(tzinfo=timezone.utc),
    }
    fields.update(extra)
    return create_document(db, ASSETS, Asset(**fields).to_document())


@pytest.fixture
def admin(db):
    return make_user(db, "admin", role=Role.ADMIN)


@pytest.fixture
def member(db):
    return make_user(db, "member")


@pytest.fixture
def admin_headers(admin, settings):
    return auth_headers(admin, settings)


@pytest.fixture
def member_headers(member, settings):
    return auth_headers(member, settings)
