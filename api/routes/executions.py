"""
Execution Routes

Interactive test execution: step toggling, step failures, final results
and resets. Every route works on the unscoped executions unless a
session_id query parameter selects a test run session.
"""

from typing import Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from core.config import get_settings
from core.database import get_db
from core.logger import get_logger
from api.dependencies import get_current_user_id, get_execution_store
from models.base import format_utc_datetime
from models.test_execution import ExecutionStatus
from models.test_run_session import TestRunSession
from services.execution_state import (
    ExecutionDetails,
    ExecutionState,
    ExecutionUpdate,
    TransitionRejected,
    parse_status,
)
from services.execution_store import ExecutionStore, ExecutionStoreError, ExecutionConflictError
from services.execution_tracker import (
    DetailsRequiredError,
    ExecutionTracker,
    InvalidStepError,
    UnknownTestCaseError,
)
from services.session_service import SessionService, SessionStateError
from services.test_case_service import TestCaseService

settings = get_settings()
logger = get_logger(__name__)

router = APIRouter()


# Request Models
class VersionedRequest(BaseModel):
    """Optional optimistic concurrency check against the version the client last saw."""
    expected_version: Optional[int] = None


class FailStepRequest(VersionedRequest):
    """Request model for recording a failed step."""
    reason: str = ""


class ExecutionDetailsModel(BaseModel):
    """Details collected for failed, blocked and skipped results."""
    notes: Optional[str] = None
    failure_reason: Optional[str] = None
    environment: Optional[str] = None
    browser: Optional[str] = None
    os_version: Optional[str] = None

    def to_details(self) -> ExecutionDetails:
        return ExecutionDetails(**self.model_dump())


class MarkResultRequest(VersionedRequest):
    """
    Request model for recording a final result.

    status accepts the status name or its keyboard shortcut (P, F, B, S).
    """
    status: ExecutionStatus
    details: Optional[ExecutionDetailsModel] = None

    @field_validator("status", mode="before")
    @classmethod
    def resolve_shortcut(cls, value):
        if isinstance(value, str):
            return parse_status(value)
        return value

    class Config:
        json_schema_extra = {
            "example": {
                "status": "failed",
                "details": {
                    "environment": "staging",
                    "browser": "Chrome 126",
                    "os_version": "macOS 14",
                    "notes": "Checkout button does nothing",
                    "failure_reason": "Step 3 did not navigate"
                }
            }
        }


class FailedStepModel(BaseModel):
    step_number: int
    failure_reason: str


class ProgressUpdateRequest(VersionedRequest):
    """Partial update of an execution. Only the fields sent are written."""
    status: Optional[ExecutionStatus] = None
    completed_steps: Optional[List[int]] = None
    failed_steps: Optional[List[FailedStepModel]] = None
    notes: Optional[str] = None
    failure_reason: Optional[str] = None
    test_environment: Optional[str] = None
    browser: Optional[str] = None
    os_version: Optional[str] = None

    def to_update(self) -> ExecutionUpdate:
        values = self.model_dump(exclude_unset=True, exclude={"expected_version"})
        # These fields cannot be cleared, so an explicit null means "unchanged"
        for name in ("status", "completed_steps", "failed_steps"):
            if values.get(name) is None:
                values.pop(name, None)
        return ExecutionUpdate(**values)


def execution_to_dict(test_case_id: str, state: ExecutionState) -> dict:
    """Serialize an execution snapshot for the dashboard."""
    return {
        "id": state.id,
        "test_case_id": test_case_id,
        "status": state.status.value,
        "completed_steps": list(state.completed_steps),
        "failed_steps": [failed.to_dict() for failed in state.failed_steps],
        "notes": state.notes,
        "failure_reason": state.failure_reason,
        "started_at": format_utc_datetime(state.started_at),
        "completed_at": format_utc_datetime(state.completed_at),
        "duration_minutes": state.duration_minutes,
        "test_environment": state.test_environment,
        "browser": state.browser,
        "os_version": state.os_version,
        "version": state.version,
        "locked": state.is_locked,
    }


def _get_session(session_id: Optional[str], user_id: str, db: Session) -> Optional[TestRunSession]:
    if not session_id:
        return None
    session = SessionService.get_session(session_id, user_id, db)
    if not session:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Test session not found")
    return session


def _build_tracker(
    test_case_ids: List[str],
    session: Optional[TestRunSession],
    user_id: str,
    db: Session,
    store: ExecutionStore
) -> ExecutionTracker:
    """Load a tracker for the given test cases in the session scope."""
    if session is not None:
        outside = [tc_id for tc_id in test_case_ids if tc_id not in (session.test_case_ids or [])]
        if outside:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Test case is not part of this session"
            )

    test_cases = TestCaseService.get_test_cases(test_case_ids, user_id, db)
    if len(test_cases) != len(set(test_case_ids)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Test case not found")

    def on_status_change(test_case_id: str, old: ExecutionStatus, new: ExecutionStatus) -> None:
        if session is not None:
            SessionService.record_status_change(session, old, new, db)

    tracker = ExecutionTracker(
        store,
        session_id=session.id if session else None,
        executed_by=user_id,
        default_environment=(session.environment if session else None) or settings.DEFAULT_TEST_ENVIRONMENT,
        on_status_change=on_status_change,
    )
    try:
        tracker.load(test_cases)
    except ExecutionStoreError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load executions"
        )
    return tracker


def _run_action(
    test_case_id: str,
    session_id: Optional[str],
    user_id: str,
    db: Session,
    store: ExecutionStore,
    action: Callable[[ExecutionTracker], ExecutionState],
    reset: bool = False
) -> dict:
    """Load the tracker for one test case, run the action and map domain errors to HTTP errors."""
    session = _get_session(session_id, user_id, db)
    if session is not None:
        try:
            SessionService.ensure_accepts_executions(session, db, reset=reset)
        except SessionStateError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    tracker = _build_tracker([test_case_id], session, user_id, db, store)

    try:
        state = action(tracker)
    except DetailsRequiredError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except InvalidStepError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except TransitionRejected as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.reason)
    except UnknownTestCaseError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ExecutionConflictError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(e), "current_version": e.current_version}
        )
    except ExecutionStoreError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save progress"
        )

    return execution_to_dict(test_case_id, state)


@router.get("")
async def list_executions(
    test_case_ids: Optional[List[str]] = Query(None),
    session_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    store: ExecutionStore = Depends(get_execution_store)
):
    """
    Get executions and status counts for the test case table.

    Without test_case_ids, all test cases of the session (or all of the
    user's test cases when unscoped) are included. stats always covers
    every included case; executions holds one page of them.
    """
    session = _get_session(session_id, user_id, db)

    if test_case_ids:
        ids = list(dict.fromkeys(test_case_ids))
    elif session is not None:
        ids = list(session.test_case_ids or [])
    else:
        ids = TestCaseService.list_test_case_ids(user_id, db)

    size = min(page_size or settings.MAX_PAGE_SIZE, settings.MAX_PAGE_SIZE)
    page_ids = ids[(page - 1) * size:page * size]

    tracker = _build_tracker(ids, session, user_id, db, store)
    executions: Dict[str, dict] = {
        test_case_id: execution_to_dict(test_case_id, tracker.get_execution(test_case_id))
        for test_case_id in page_ids
    }
    return {
        "executions": executions,
        "stats": tracker.stats(),
        "total": len(ids),
        "page": page,
        "page_size": size,
        "total_pages": (len(ids) + size - 1) // size,
    }


@router.get("/{test_case_id}")
async def get_execution(
    test_case_id: str,
    session_id: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    store: ExecutionStore = Depends(get_execution_store)
):
    """Get the execution of one test case (not_run defaults when none was recorded)."""
    session = _get_session(session_id, user_id, db)
    tracker = _build_tracker([test_case_id], session, user_id, db, store)
    return execution_to_dict(test_case_id, tracker.get_execution(test_case_id))


@router.post("/{test_case_id}/steps/{step_number}/toggle")
async def toggle_step(
    test_case_id: str,
    step_number: int,
    payload: Optional[VersionedRequest] = None,
    session_id: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    store: ExecutionStore = Depends(get_execution_store)
):
    """Toggle completion of a step. The first toggle starts the execution."""
    expected_version = payload.expected_version if payload else None
    return _run_action(
        test_case_id, session_id, user_id, db, store,
        lambda tracker: tracker.toggle_step(test_case_id, step_number, expected_version)
    )


@router.post("/{test_case_id}/steps/{step_number}/fail")
async def fail_step(
    test_case_id: str,
    step_number: int,
    payload: FailStepRequest,
    session_id: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    store: ExecutionStore = Depends(get_execution_store)
):
    """Record why a step failed."""
    return _run_action(
        test_case_id, session_id, user_id, db, store,
        lambda tracker: tracker.fail_step(test_case_id, step_number, payload.reason, payload.expected_version)
    )


@router.post("/{test_case_id}/result")
async def mark_test_result(
    test_case_id: str,
    payload: MarkResultRequest,
    session_id: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    store: ExecutionStore = Depends(get_execution_store)
):
    """
    Record the final result of a test case.

    passed is saved immediately. failed, blocked and skipped require
    details; without them the response is 422 and nothing is saved.
    A recorded result is locked until the test is reset.
    """
    details = payload.details.to_details() if payload.details else None
    return _run_action(
        test_case_id, session_id, user_id, db, store,
        lambda tracker: tracker.mark_test_result(test_case_id, payload.status, details, payload.expected_version)
    )


@router.post("/{test_case_id}/reset")
async def reset_test(
    test_case_id: str,
    payload: Optional[VersionedRequest] = None,
    session_id: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    store: ExecutionStore = Depends(get_execution_store)
):
    """
    Reset the execution to not_run.

    Allowed in paused and completed sessions; a completed session is reopened.
    """
    expected_version = payload.expected_version if payload else None
    return _run_action(
        test_case_id, session_id, user_id, db, store,
        lambda tracker: tracker.reset_test(test_case_id, expected_version),
        reset=True
    )


@router.patch("/{test_case_id}")
async def save_execution_progress(
    test_case_id: str,
    payload: ProgressUpdateRequest,
    session_id: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    store: ExecutionStore = Depends(get_execution_store)
):
    """Write a partial execution update (e.g. notes typed during a run)."""
    return _run_action(
        test_case_id, session_id, user_id, db, store,
        lambda tracker: tracker.save_execution_progress(test_case_id, payload.to_update(), payload.expected_version)
    )
