"""
API Dependencies

FastAPI dependencies shared by the routers: the authenticated user id and
the execution store bound to the request's database session.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from core.database import get_db
from core.logger import get_logger
from core.security import get_token_subject
from services.execution_store import ExecutionStore, SqlAlchemyExecutionStore

logger = get_logger(__name__)

# auto_error is off so a missing header gets a 401 like a bad token does
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> str:
    """
    Id of the user the bearer token was issued to.

    Raises:
        HTTPException: 401 if the token is missing, invalid or has no subject
    """
    if credentials is None:
        raise _unauthorized("Please log in to continue")

    user_id = get_token_subject(credentials.credentials)
    if user_id is None:
        logger.debug("Rejected request with an invalid bearer token")
        raise _unauthorized("Invalid authentication credentials")

    return user_id


def get_execution_store(db: Session = Depends(get_db)) -> ExecutionStore:
    return SqlAlchemyExecutionStore(db)
