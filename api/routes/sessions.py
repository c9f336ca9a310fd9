"""
Test Run Session Routes

Create and drive test run sessions.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from core.database import get_db
from core.logger import get_logger
from api.dependencies import get_current_user_id
from models.test_run_session import SessionStatus
from services.session_service import SessionService, SessionStateError

logger = get_logger(__name__)

router = APIRouter()


class CreateSessionRequest(BaseModel):
    """Request model for creating a test run session."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    environment: Optional[str] = None
    planned_start: Optional[datetime] = None
    test_case_ids: List[str] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Release 2.4 regression",
                "environment": "staging",
                "test_case_ids": ["9b7c...", "f1a2..."]
            }
        }


def _get_owned_session(session_id: str, user_id: str, db: Session):
    session = SessionService.get_session(session_id, user_id, db)
    if not session:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Test session not found")
    return session


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_session(
    payload: CreateSessionRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Create a planned session over the given test cases."""
    if not payload.name.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name is required")

    session = SessionService.create_session(
        user_id,
        payload.name.strip(),
        db,
        description=payload.description,
        environment=payload.environment,
        planned_start=payload.planned_start,
        test_case_ids=payload.test_case_ids,
    )
    return session.to_dict()


@router.get("")
async def list_sessions(
    status_filter: Optional[SessionStatus] = Query(None, alias="status"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """List the user's sessions, newest first."""
    return [session.to_dict() for session in SessionService.list_sessions(user_id, db, status_filter)]


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Get a session with its progress counters."""
    return _get_owned_session(session_id, user_id, db).to_dict()


@router.post("/{session_id}/{action}")
async def change_session_status(
    session_id: str,
    action: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Start, pause or abort a session.

    Args:
        action: start, pause or abort
    """
    handlers = {
        "start": SessionService.start_session,
        "pause": SessionService.pause_session,
        "abort": SessionService.abort_session,
    }
    handler = handlers.get(action)
    if handler is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown session action: {action}")

    session = _get_owned_session(session_id, user_id, db)
    try:
        session = handler(session, db)
    except SessionStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return session.to_dict()
