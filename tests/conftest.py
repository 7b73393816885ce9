# flake8: noqa
import sys
from collections import namedtuple
from pathlib import Path

# Ensure project root is on sys.path so `kitchn` can be imported when tests are run
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))  # noqa: E402

import pytest
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from kitchn import app as app_module
from kitchn import models
from kitchn.auth import AuthContext, hash_password
from kitchn.config import Settings, get_settings
from kitchn.db import Base, enable_sqlite_foreign_keys


SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
# Use StaticPool so the same in-memory database is shared across connections
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_foreign_keys(engine)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


def override_get_settings():
    return Settings(
        _env_file=None,
        openai_api_key="sk-test",
        stripe_secret_key="sk_test",
        stripe_webhook_secret="whsec_test",
    )


app_module.app.dependency_overrides[app_module.get_db] = override_get_db
app_module.app.dependency_overrides[get_settings] = override_get_settings

User = namedtuple("User", "id email headers")


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return override_get_settings()


@pytest.fixture
def client():
    return TestClient(app_module.app)


@pytest.fixture
def make_user(client):
    """Sign up and sign in through the API; returns id, email and auth headers."""

    def _make(email="chef@example.com", restaurant_name="Chez Test", remember=True):
        res = client.post(
            "/auth/signup",
            json={
                "email": email,
                "password": "secret123",
                "full_name": email.split("@")[0],
                "restaurant_name": restaurant_name,
            },
        )
        assert res.status_code == 201, res.text
        token = client.post(
            "/auth/signin",
            json={"email": email, "password": "secret123", "remember": remember},
        ).json()["token"]
        return User(res.json()["id"], email, {"Authorization": f"Bearer {token}"})

    return _make


@pytest.fixture
def ctx(db):
    """A signed-in chef with a restaurant, built directly in the database."""
    profile = models.Profile(
        email="cook@example.com",
        password_hash=hash_password("secret123"),
        restaurant_role="chef",
    )
    db.add(profile)
    db.flush()
    restaurant = models.Restaurant(name="Le Test", owner_user_id=profile.id)
    db.add(restaurant)
    db.flush()
    profile.restaurant_id = restaurant.id
    db.commit()
    return AuthContext(user=profile)
