"""Pytest configuration and fixtures."""

import functools
import uuid

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from igsync.config import Settings
from igsync.models.base import Base
from igsync.services.instagram.client import GraphClient

from tests.fakes import IG_TOKEN, NOW, TEST_SECRET, FakeGraphAPI, RecordingSleep, no_sleep


@pytest.fixture
def engine():
    """Create a test database engine with fresh tables for each test."""
    # Use in-memory SQLite for tests
    engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    """Create a test database session."""
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url="sqlite:///:memory:",
        encryption_key=TEST_SECRET,
    )


@pytest.fixture
def sample_account_data():
    """Sample connected account data with unique ID per test."""
    unique_id = "1784" + str(uuid.uuid4().int)[:11]
    return {
        "business_id": unique_id,
        "username": f"acme_{unique_id[-6:]}",
        "name": "Acme Studio",
        "access_token": IG_TOKEN,
        "timezone": "UTC",
        "is_active": True,
    }


@pytest.fixture
def account(session, sample_account_data):
    """A persisted account holding a plain Instagram token."""
    from igsync.repositories import AccountRepository

    repo = AccountRepository(session)
    account = repo.create(**sample_account_data)
    repo.commit()
    return account


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def fake_graph(sample_account_data):
    return FakeGraphAPI(sample_account_data["business_id"])


@pytest.fixture
def client_factory(fake_graph):
    """GraphClient factory wired to the fake API without real sleeping."""
    return functools.partial(
        GraphClient,
        transport=httpx.MockTransport(fake_graph),
        sleep=no_sleep,
    )
