"""
Pytest Configuration and Fixtures

Provides shared test fixtures for all tests.
"""

import os
import sys
from dataclasses import replace
from datetime import datetime, timedelta

# Settings are read at import time, so the test environment must be set first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("REDIS_URL", "redis://localhost:1")

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from api.main import app
from core.database import Base, get_db
from core.security import create_access_token
from models.base import generate_uuid
from models.test_case import TestCase, TestCaseStatus
from services.execution_store import ExecutionStore, ExecutionStoreError, ExecutionConflictError
from services.execution_tracker import ExecutionTracker
from services.test_case_service import TestCaseService

# Use in-memory SQLite for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


class InMemoryExecutionStore(ExecutionStore):
    """
    ExecutionStore keeping rows in a dict.

    Set fail_writes to make every insert/update raise ExecutionStoreError.
    """

    def __init__(self):
        self.rows = {}
        self.fail_writes = False
        self.writes = 0

    def select(self, test_case_ids, session_id):
        wanted = set(test_case_ids)
        return {
            row["test_case_id"]: row["state"]
            for row in self.rows.values()
            if row["test_case_id"] in wanted and row["session_id"] == session_id
        }

    def insert(self, test_case_id, session_id, state, executed_by):
        if self.fail_writes:
            raise ExecutionStoreError("Failed to save progress")
        for row in self.rows.values():
            if row["test_case_id"] == test_case_id and row["session_id"] == session_id:
                raise ExecutionConflictError("already inserted", current_version=row["state"].version)

        execution_id = generate_uuid()
        stored = replace(state, id=execution_id, version=1)
        self.rows[execution_id] = {
            "test_case_id": test_case_id,
            "session_id": session_id,
            "executed_by": executed_by,
            "state": stored,
        }
        self.writes += 1
        return stored

    def update(self, execution_id, state, expected_version, executed_by):
        if self.fail_writes:
            raise ExecutionStoreError("Failed to save progress")
        row = self.rows.get(execution_id)
        if row is None:
            raise ExecutionStoreError(f"Execution {execution_id} no longer exists")
        if row["state"].version != expected_version:
            raise ExecutionConflictError("modified", current_version=row["state"].version)

        stored = replace(state, id=execution_id, version=expected_version + 1)
        row["state"] = stored
        row["executed_by"] = executed_by or row["executed_by"]
        self.writes += 1
        return stored

    def bump_version(self, execution_id):
        """Simulate another writer updating the row."""
        row = self.rows[execution_id]
        row["state"] = replace(row["state"], version=row["state"].version + 1)


class FakeTestCase:
    """Minimal test case for the tracker: an id and its step numbers."""

    def __init__(self, id, step_numbers=(1, 2, 3)):
        self.id = id
        self.step_numbers = list(step_numbers)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start=datetime(2025, 3, 1, 9, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db: Session):
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def memory_store() -> InMemoryExecutionStore:
    return InMemoryExecutionStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def auth_headers() -> dict:
    """Bearer header for USER_ID."""
    token = create_access_token({"sub": USER_ID})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_auth_headers() -> dict:
    token = create_access_token({"sub": OTHER_USER_ID})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_test_case(db: Session):
    """Factory creating a test case owned by USER_ID with the given number of steps."""
    def _make(title="Login with valid credentials", steps=3, user_id=USER_ID, status=TestCaseStatus.ACTIVE, **extra):
        data = {
            "title": title,
            "description": f"{title} description",
            "test_steps": [
                {"action": f"Action {n}", "expected": f"Result {n}"} for n in range(1, steps + 1)
            ],
            "expected_result": "Works",
            "status": status,
        }
        data.update(extra)
        return TestCaseService.create_test_case(user_id, data, db)

    return _make


@pytest.fixture
def active_case(make_test_case) -> TestCase:
    """An active three-step test case owned by USER_ID."""
    return make_test_case()


@pytest.fixture
def make_tracker(memory_store, clock):
    """Factory for a tracker over in-memory test cases, backed by memory_store."""
    def _make(*test_case_ids, steps=(1, 2, 3), **kwargs):
        tracker = ExecutionTracker(memory_store, clock=clock, **kwargs)
        tracker.load([FakeTestCase(tc_id, steps) for tc_id in (test_case_ids or ("tc-1",))])
        return tracker

    return _make
