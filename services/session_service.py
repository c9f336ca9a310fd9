"""
Test Run Session Service

Handles test run sessions and keeps their progress counters in step with
the executions recorded inside them.
"""

import math
from datetime import datetime
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from core.logger import get_logger
from models.test_case import TestCase
from models.test_execution import ExecutionStatus, TERMINAL_STATUSES
from models.test_run_session import TestRunSession, SessionStatus

logger = get_logger(__name__)

RESULT_COUNTERS = {
    ExecutionStatus.PASSED: "passed_cases",
    ExecutionStatus.FAILED: "failed_cases",
    ExecutionStatus.BLOCKED: "blocked_cases",
    ExecutionStatus.SKIPPED: "skipped_cases",
}


class SessionStateError(ValueError):
    """Raised when a session action is not allowed in its current status."""


def progress_percentage(completed: int, total: int) -> int:
    """round(completed / total * 100), half up. 0 for an empty session."""
    if total <= 0:
        return 0
    return int(math.floor(completed / total * 100 + 0.5))


class SessionService:
    """Service for managing test run sessions."""

    @staticmethod
    def create_session(
        user_id: str,
        name: str,
        db: Session,
        description: Optional[str] = None,
        environment: Optional[str] = None,
        planned_start: Optional[datetime] = None,
        test_case_ids: Optional[List[str]] = None
    ) -> TestRunSession:
        """
        Create a planned session over the given test cases.

        Args:
            user_id: Owner
            name: Session name
            db: Database session
            description: Optional description
            environment: Environment the session runs against
            planned_start: When the run is planned to start
            test_case_ids: Test cases in scope; ids not owned by the user are ignored

        Returns:
            Created session
        """
        ids = []
        if test_case_ids:
            owned = {
                row.id for row in db.query(TestCase.id).filter(
                    TestCase.id.in_(test_case_ids),
                    TestCase.user_id == user_id
                ).all()
            }
            ids = [tc_id for tc_id in dict.fromkeys(test_case_ids) if tc_id in owned]

        session = TestRunSession(
            user_id=user_id,
            name=name,
            description=description,
            environment=environment,
            planned_start=planned_start,
            status=SessionStatus.PLANNED,
            test_case_ids=ids,
            test_cases_total=len(ids),
        )
        db.add(session)
        db.commit()
        db.refresh(session)

        logger.info(f"Created test run session {session.id} with {len(ids)} test case(s)")
        return session

    @staticmethod
    def get_session(session_id: str, user_id: str, db: Session) -> Optional[TestRunSession]:
        return db.query(TestRunSession).filter(
            TestRunSession.id == session_id,
            TestRunSession.user_id == user_id
        ).first()

    @staticmethod
    def list_sessions(user_id: str, db: Session, status: Optional[SessionStatus] = None) -> List[TestRunSession]:
        query = db.query(TestRunSession).filter(TestRunSession.user_id == user_id)
        if status:
            query = query.filter(TestRunSession.status == status)
        return query.order_by(desc(TestRunSession.created_at)).all()

    @staticmethod
    def start_session(session: TestRunSession, db: Session) -> TestRunSession:
        """Move a planned or paused session to in_progress. actual_start is stamped once."""
        if session.status not in (SessionStatus.PLANNED, SessionStatus.PAUSED):
            raise SessionStateError(f"Cannot start a session that is {session.status.value}")

        session.status = SessionStatus.IN_PROGRESS
        if session.actual_start is None:
            session.actual_start = datetime.utcnow()
        db.commit()
        db.refresh(session)
        return session

    @staticmethod
    def pause_session(session: TestRunSession, db: Session) -> TestRunSession:
        if session.status != SessionStatus.IN_PROGRESS:
            raise SessionStateError(f"Cannot pause a session that is {session.status.value}")

        session.status = SessionStatus.PAUSED
        db.commit()
        db.refresh(session)
        return session

    @staticmethod
    def abort_session(session: TestRunSession, db: Session) -> TestRunSession:
        if session.is_closed:
            raise SessionStateError(f"Session is already {session.status.value}")

        session.status = SessionStatus.ABORTED
        session.actual_end = datetime.utcnow()
        db.commit()
        db.refresh(session)
        logger.info(f"Test run session {session.id} aborted")
        return session

    @staticmethod
    def ensure_accepts_executions(session: TestRunSession, db: Session, reset: bool = False) -> None:
        """
        Check that executions may be written in the session.

        A planned session is started by its first execution write. A reset is
        also accepted in a paused or completed session: it only takes a
        result back out, and reopens a completed session.

        Raises:
            SessionStateError: If the session is aborted, paused, or completed
                and the write is not a reset
        """
        if session.status == SessionStatus.ABORTED:
            raise SessionStateError("Session is aborted; its results can no longer be changed")
        if reset:
            return
        if session.status == SessionStatus.COMPLETED:
            raise SessionStateError("Session is completed; reset a test to run it again")
        if session.status == SessionStatus.PAUSED:
            raise SessionStateError("Session is paused; resume it before recording results")
        if session.status == SessionStatus.PLANNED:
            SessionService.start_session(session, db)

    @staticmethod
    def record_status_change(
        session: TestRunSession,
        old_status: ExecutionStatus,
        new_status: ExecutionStatus,
        db: Session
    ) -> TestRunSession:
        """
        Update the session counters after an execution in it changed status.

        A case entering a final result counts as completed; a reset takes it
        back out and reopens a completed session. The session completes when
        every case has a final result.
        """
        was_final = old_status in TERMINAL_STATUSES
        is_final = new_status in TERMINAL_STATUSES

        if was_final == is_final:
            return session

        if is_final:
            session.test_cases_completed += 1
            counter = RESULT_COUNTERS[new_status]
            setattr(session, counter, getattr(session, counter) + 1)
        else:
            session.test_cases_completed = max(session.test_cases_completed - 1, 0)
            counter = RESULT_COUNTERS[old_status]
            setattr(session, counter, max(getattr(session, counter) - 1, 0))
            if session.status == SessionStatus.COMPLETED:
                session.status = SessionStatus.IN_PROGRESS
                session.actual_end = None
                logger.info(f"Test run session {session.id} reopened")

        session.progress_percentage = progress_percentage(
            session.test_cases_completed, session.test_cases_total
        )

        if session.test_cases_total and session.test_cases_completed >= session.test_cases_total:
            session.status = SessionStatus.COMPLETED
            session.actual_end = datetime.utcnow()
            logger.info(f"Test run session {session.id} completed")

        db.commit()
        db.refresh(session)
        return session
