"""
Pytest configuration and shared fixtures for testing.
"""
from datetime import timedelta
from pathlib import Path
from typing import Callable, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from edumeter_analytics.core.datetime_utils import utc_now
from edumeter_analytics.models import (
    Base,
    ItemResponse,
    Student,
    TestSession,
)

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"

# Use SQLite for tests; path is relative to this file so the .db lands
# inside tests/ regardless of the working directory.
_TEST_DB = Path(__file__).parent / "test.db"
SQLALCHEMY_DATABASE_URL = f"sqlite:///{_TEST_DB}"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    """
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_session(db_session) -> Callable[..., TestSession]:
    """Factory for an examinee plus one test session, optionally in a subgroup."""

    def _make(tenant_id: str = TENANT, group: Optional[str] = None) -> TestSession:
        student = Student(
            tenant_id=tenant_id,
            attributes={"group": group} if group else {},
        )
        db_session.add(student)
        db_session.flush()
        session = TestSession(tenant_id=tenant_id, student_id=student.id)
        db_session.add(session)
        db_session.flush()
        return session

    return _make


@pytest.fixture
def add_response(db_session) -> Callable[..., ItemResponse]:
    """Factory for one response; answered a day ago unless told otherwise."""

    def _add(
        session: TestSession,
        item_id: str,
        is_correct: Optional[bool],
        response_time_ms: Optional[int] = None,
        answered_at=None,
    ) -> ItemResponse:
        response = ItemResponse(
            tenant_id=session.tenant_id,
            session_id=session.id,
            item_id=item_id,
            is_correct=is_correct,
            response_time_ms=response_time_ms,
            answered_at=answered_at or utc_now() - timedelta(days=1),
        )
        db_session.add(response)
        return response

    return _add


@pytest.fixture
def seed_item(db_session, make_session, add_response) -> Callable[..., List[ItemResponse]]:
    """
    Seed `total` single-response sessions for one item, the first `correct`
    of them answered correctly.
    """

    def _seed(
        item_id: str,
        total: int,
        correct: int,
        tenant_id: str = TENANT,
        group: Optional[str] = None,
        response_time_ms: Optional[int] = None,
        answered_at=None,
    ) -> List[ItemResponse]:
        responses = []
        for i in range(total):
            session = make_session(tenant_id=tenant_id, group=group)
            responses.append(
                add_response(
                    session,
                    item_id,
                    i < correct,
                    response_time_ms=response_time_ms,
                    answered_at=answered_at,
                )
            )
        db_session.commit()
        return responses

    return _seed
