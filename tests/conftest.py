"""
Pytest configuration and fixtures
"""
import os

# Settings are read at import time; keep the app off any real database and
# stop it from starting the background sweep
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SWEEP_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from demo_followup.clock import fixed_clock
from demo_followup.database import Base
from demo_followup.models import Demo
from demo_followup.models.enums import DemoStatus, MessageChannel
from demo_followup.services.executor import Executor
from demo_followup.services.job_store import JobStore
from demo_followup.services.templates import TemplateRenderer
from demo_followup.services.timeline import classify_demo_type


# Use in-memory database for testing
TEST_DATABASE_URL = "sqlite://"

# Every test runs at this instant
NOW = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


class FakeTransport:
    """Records sends instead of calling a provider"""

    def __init__(self, channel: MessageChannel):
        self.channel = channel
        self.sent = []
        self.fail_with = None
        self.failures_left = 0

    def fail(self, error: Exception, times: int = 1_000):
        self.fail_with = error
        self.failures_left = times

    def send(self, recipient, content, idempotency_key):
        if self.failures_left > 0:
            self.failures_left -= 1
            raise self.fail_with
        self.sent.append((recipient, content, idempotency_key))
        return f"{self.channel.value.lower()}-{len(self.sent)}"


@pytest.fixture
def test_engine():
    """Create test database engine; one shared connection so every session sees the same data"""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def test_db_session(session_factory):
    """Create test database session"""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return fixed_clock(NOW)


@pytest.fixture
def job_store(test_db_session):
    return JobStore(test_db_session)


@pytest.fixture
def email_transport():
    return FakeTransport(MessageChannel.EMAIL)


@pytest.fixture
def sms_transport():
    return FakeTransport(MessageChannel.SMS)


@pytest.fixture
def renderer():
    return TemplateRenderer(product_name="Acme", sender_name="Sam at Acme", reschedule_url="https://acme.test/r")


@pytest.fixture
def executor(session_factory, email_transport, sms_transport, renderer, clock):
    return Executor(
        session_factory=session_factory,
        transports={MessageChannel.EMAIL: email_transport, MessageChannel.SMS: sms_transport},
        renderer=renderer,
        clock=clock,
        batch_size=25,
        claim_lease=timedelta(minutes=5),
        max_retries=3,
    )


@pytest.fixture
def make_demo(test_db_session):
    """Factory for demo rows"""
    counter = {"n": 0}

    def _make(**overrides) -> Demo:
        counter["n"] += 1
        scheduled_at = overrides.pop("scheduled_at", NOW + timedelta(days=2))
        values = {
            "calendly_event_id": f"evt-{counter['n']}",
            "calendly_invitee_id": f"inv-{counter['n']}",
            "email": f"person{counter['n']}@example.com",
            "phone": "+15550100000",
            "name": "Jane Doe",
            "scheduled_at": scheduled_at,
            "timezone": "America/New_York",
            "demo_type": classify_demo_type(scheduled_at, NOW),
            "join_url": "https://meet.test/abc",
            "status": DemoStatus.PENDING,
        }
        values.update(overrides)
        demo = Demo(**values)
        test_db_session.add(demo)
        test_db_session.commit()
        test_db_session.refresh(demo)
        return demo

    return _make


# Test markers
def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
