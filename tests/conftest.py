"""Pytest fixtures for coffeeon tests.

The application reads its settings at import time, so the environment is
prepared before anything from ``coffeeon`` is imported.
"""
import os
import tempfile

_tmpdir = tempfile.mkdtemp(prefix="coffeeon-tests-")
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{_tmpdir}/shop.db"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["DB_TIMEOUT_SECONDS"] = "15"

import fakeredis
import pytest
from fastapi.testclient import TestClient

from coffeeon.api.deps import get_session_store
from coffeeon.core.config import settings
from coffeeon.db.models import AdminLog, Product, Role, User
from coffeeon.db.session import Base, SessionLocal, engine
from coffeeon.main import app
from coffeeon.security.utils import hash_password
from coffeeon.store.session_store import Session as LoginSession, SessionStore

PASSWORD = "secret-pass"


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def session_store():
    return SessionStore(fakeredis.FakeRedis(decode_responses=True))


@pytest.fixture
def make_user(db):
    def _make(email="ana@example.com", name="Ana", role=Role.USER.value, cashback_cents=0, active=True):
        user = User(
            name=name,
            email=email,
            password_hash=hash_password(PASSWORD),
            role=role,
            active=active,
            cashback_cents=cashback_cents,
        )
        db.add(user); db.commit(); db.refresh(user)
        return user
    return _make


@pytest.fixture
def make_product(db):
    def _make(name="Espresso Blend", price_cents=2500, subscription=False, active=True):
        slug = name.lower().replace(" ", "-")
        product = Product(name=name, price_cents=price_cents, subscription=subscription, active=active, slug=slug, stock=10)
        db.add(product); db.commit(); db.refresh(product)
        return product
    return _make


@pytest.fixture
def customer(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@example.com", name="Admin", role=Role.ADMIN.value)


@pytest.fixture
def login_as(session_store):
    """Return a factory of TestClients, each carrying a session cookie for one user (or none)."""
    clients = []
    app.dependency_overrides[get_session_store] = lambda: session_store

    def _login(user=None):
        c = TestClient(app)
        if user is not None:
            token = f"token-{user.id}"
            session_store.set(token, LoginSession(id=user.id, email=user.email), 3600)
            c.cookies.set(settings.SESSION_COOKIE_NAME, token)
        clients.append(c)
        return c

    yield _login
    for c in clients:
        c.close()
    app.dependency_overrides.clear()


@pytest.fixture
def anon_client(login_as):
    return login_as(None)


def cashback_of(db, user_id) -> int:
    db.expire_all()
    return db.get(User, user_id).cashback_cents


def audit_actions(db) -> list[str]:
    db.expire_all()
    return [row.action for row in db.query(AdminLog).order_by(AdminLog.id).all()]
