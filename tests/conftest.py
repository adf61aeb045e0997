"""Shared test fixtures for the pagesdns test suite."""

import datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from pagesdns.app.db import Base
from pagesdns.app.db.models import (  # noqa: F401  registers models with Base
    CloudflareRecord,
    Installation,
    PagesUrl,
    Token,
)
from pagesdns.config import config

TEST_ENCRYPTION_KEY = "unit-test-encryption-key-0123456789abcdef"


@pytest.fixture
def engine():
    eng = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(bind=engine)()
    yield session
    session.close()


@pytest.fixture
def patch_connect(db_session, monkeypatch):
    """Patch connect() where the store functions look it up, returning the
    shared in-memory SQLite session instead of reading vyper config."""
    _factory = lambda: db_session  # noqa: E731
    monkeypatch.setattr("pagesdns.app.utils.connect", _factory)
    return db_session


@pytest.fixture
def encryption_key():
    previous = config.get_string("encryption_key")
    config.set("encryption_key", TEST_ENCRYPTION_KEY)
    yield TEST_ENCRYPTION_KEY
    config.set("encryption_key", previous)


class FakeClock:
    """Settable clock for token expiry tests."""

    def __init__(self, now=None):
        self.now = now or datetime.datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += datetime.timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


def http_response(status=200, payload=None, text=""):
    """A MagicMock shaped like a requests.Response."""
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    if payload is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    response.text = text
    return response


@pytest.fixture
def make_response():
    return http_response
