"""Shared fixtures for the test suite."""

import jwt
import pytest

from speaker_portal.config import Settings
from speaker_portal.domain.models import User
from speaker_portal.portal import Portal
from speaker_portal.services.mailer import ConsoleMailer

TEST_SECRET = "portal-test-secret-0123456789abcdef"


@pytest.fixture
def settings() -> Settings:
    return Settings(jwt_secret=TEST_SECRET, rate_limit=10_000, delivery_timeout=1.0)


@pytest.fixture
def mailer() -> ConsoleMailer:
    return ConsoleMailer()


@pytest.fixture
def portal(settings, mailer) -> Portal:
    portal = Portal(settings, mailer=mailer)
    portal.bus.send_timeout = 0.2
    return portal


@pytest.fixture
def make_token():
    def _make(user_id, secret: str = TEST_SECRET) -> str:
        return jwt.encode({"sub": str(user_id)}, secret, algorithm="HS256")

    return _make


@pytest.fixture
def new_user():
    """Factory registering a user in a store: ``await new_user(store, "Ada")``."""

    async def _new(store, name: str = "Speaker") -> User:
        return await store.add_user(
            User(email=f"{name.lower().replace(' ', '.')}@example.com", name=name)
        )

    return _new
