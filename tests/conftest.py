"""
Pytest fixtures for the enrolment test suite.

Provides:
- In-memory SQLite engine with every kernel and batch table
- Sessions, a deterministic clock and a wired EnrolmentManager
- Learner / course factories
- Structured log capture

A single shared connection (StaticPool) backs the in-memory database, so
sessions opened by a runner thread see the same data as the test session.
Tests commit before handing control to code that opens its own sessions.
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import enrolment_batch.models  # noqa: F401
import enrolment_kernel.models  # noqa: F401
from enrolment_kernel.db.base import Base
from enrolment_kernel.domain.clock import DeterministicClock
from enrolment_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from enrolment_kernel.models.course import CourseModel
from enrolment_kernel.models.learner import LearnerModel
from enrolment_kernel.services.access_providers import ManualEnrolmentProvider
from enrolment_kernel.services.enrolment_manager import EnrolmentManager


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture enrolment logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, scheduler):
            scheduler.run_learner_calculation()
            logs = captured_logs()
            assert any(r["message"] == "job_run_finished" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("enrolment")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return DeterministicClock(
        fixed_time=datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def manual_provider():
    return ManualEnrolmentProvider()


@pytest.fixture
def manager(db_session, manual_provider, clock):
    return EnrolmentManager(db_session, [manual_provider], clock)


# =============================================================================
# Entity factories
# =============================================================================


@pytest.fixture
def make_learner(db_session):
    """Create and flush a learner; returns its id."""

    def _make(login: str | None = None, description: str = ""):
        model = LearnerModel(
            login=login or f"learner-{uuid4().hex[:8]}",
            description=description,
        )
        db_session.add(model)
        db_session.flush()
        return model.id

    return _make


@pytest.fixture
def make_course(db_session):
    """Create and flush a course; returns its id."""

    def _make(title: str | None = None, is_published: bool = True):
        model = CourseModel(
            title=title or f"Course {uuid4().hex[:6]}",
            is_published=is_published,
        )
        db_session.add(model)
        db_session.flush()
        return model.id

    return _make


@pytest.fixture
def file_session_factory(tmp_path):
    """Sessions on a file-backed database; each session gets its own connection.

    Uncommitted work of one session is invisible to the others, unlike the
    shared in-memory connection behind ``session_factory``.
    """
    eng = create_engine(f"sqlite:///{tmp_path / 'enrolment.db'}")
    Base.metadata.create_all(eng)
    yield sessionmaker(bind=eng)
    eng.dispose()
