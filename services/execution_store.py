"""
Execution Store

Persistence collaborator of the execution tracker. ExecutionStore is the
interface the tracker depends on; SqlAlchemyExecutionStore is the
implementation used by the API. Tests substitute an in-memory store.

Updates are guarded by the row version: an update only applies when the
stored version still matches the version the caller read.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.logger import get_logger
from models.test_execution import TestExecution, ExecutionStatus
from services.execution_state import ExecutionState, FailedStep

logger = get_logger(__name__)


class ExecutionStoreError(RuntimeError):
    """Raised when the store cannot read or write an execution."""


class ExecutionConflictError(RuntimeError):
    """Raised when another writer changed the execution since it was read."""

    def __init__(self, message: str, current_version: Optional[int] = None):
        super().__init__(message)
        self.current_version = current_version


class ExecutionStore(ABC):
    """Row-oriented store for test executions."""

    @abstractmethod
    def select(self, test_case_ids: Iterable[str], session_id: Optional[str]) -> Dict[str, ExecutionState]:
        """Return the execution per test case id for the given scope. Missing ids are omitted."""

    @abstractmethod
    def insert(
        self,
        test_case_id: str,
        session_id: Optional[str],
        state: ExecutionState,
        executed_by: Optional[str]
    ) -> ExecutionState:
        """Insert the first execution row for the pair and return it with id and version."""

    @abstractmethod
    def update(
        self,
        execution_id: str,
        state: ExecutionState,
        expected_version: int,
        executed_by: Optional[str]
    ) -> ExecutionState:
        """Update the row if its version still equals expected_version; return it with the new version."""


def state_to_columns(state: ExecutionState) -> dict:
    """Map a snapshot to TestExecution column values."""
    return {
        "execution_status": state.status.value,
        "completed_steps": list(state.completed_steps),
        "failed_steps": [failed.to_dict() for failed in state.failed_steps],
        "execution_notes": state.notes,
        "failure_reason": state.failure_reason,
        "started_at": state.started_at,
        "completed_at": state.completed_at,
        "duration_minutes": state.duration_minutes,
        "test_environment": state.test_environment,
        "browser": state.browser,
        "os_version": state.os_version,
    }


def _as_list(value, execution_id: Optional[str], column: str) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    logger.warning(f"Execution {execution_id} has malformed {column} {value!r}, ignoring it")
    return []


def _completed_steps(row: TestExecution) -> tuple:
    steps = []
    for item in _as_list(row.completed_steps, row.id, "completed_steps"):
        if isinstance(item, bool):
            logger.warning(f"Execution {row.id} has malformed completed step {item!r}, skipping it")
            continue
        try:
            steps.append(int(item))
        except (TypeError, ValueError):
            logger.warning(f"Execution {row.id} has malformed completed step {item!r}, skipping it")
    return tuple(steps)


def _failed_steps(row: TestExecution) -> tuple:
    failed = []
    for item in _as_list(row.failed_steps, row.id, "failed_steps"):
        try:
            failed.append(FailedStep(int(item["step_number"]), item.get("failure_reason") or ""))
        except (TypeError, ValueError, KeyError, AttributeError):
            logger.warning(f"Execution {row.id} has malformed failed step {item!r}, skipping it")
    return tuple(failed)


def row_to_state(row: TestExecution) -> ExecutionState:
    """
    Build a snapshot from a TestExecution row.

    Rows written by older clients or edited by hand may hold an unknown
    status or odd JSON; those parts fall back to their defaults and are
    logged instead of failing the whole load.
    """
    try:
        status = ExecutionStatus(row.execution_status)
    except ValueError:
        logger.warning(f"Execution {row.id} has unknown status {row.execution_status!r}, treating as not_run")
        status = ExecutionStatus.NOT_RUN

    return ExecutionState(
        status=status,
        completed_steps=_completed_steps(row),
        failed_steps=_failed_steps(row),
        notes=row.execution_notes,
        failure_reason=row.failure_reason,
        started_at=row.started_at,
        completed_at=row.completed_at,
        duration_minutes=row.duration_minutes,
        test_environment=row.test_environment,
        browser=row.browser,
        os_version=row.os_version,
        id=row.id,
        version=row.version,
    )


class SqlAlchemyExecutionStore(ExecutionStore):
    """ExecutionStore backed by the test_executions table."""

    def __init__(self, db: Session):
        self.db = db

    def _scope(self, query, session_id: Optional[str]):
        if session_id:
            return query.filter(TestExecution.session_id == session_id)
        return query.filter(TestExecution.session_id.is_(None))

    def _find(self, test_case_id: str, session_id: Optional[str]) -> Optional[TestExecution]:
        return self._scope(
            self.db.query(TestExecution).filter(TestExecution.test_case_id == test_case_id),
            session_id
        ).first()

    def select(self, test_case_ids: Iterable[str], session_id: Optional[str]) -> Dict[str, ExecutionState]:
        ids = list(test_case_ids)
        if not ids:
            return {}

        try:
            query = self.db.query(TestExecution).filter(TestExecution.test_case_id.in_(ids))
            rows = self._scope(query, session_id).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load executions: {str(e)}", exc_info=True)
            raise ExecutionStoreError("Failed to load executions") from e

        return {row.test_case_id: row_to_state(row) for row in rows}

    def insert(
        self,
        test_case_id: str,
        session_id: Optional[str],
        state: ExecutionState,
        executed_by: Optional[str]
    ) -> ExecutionState:
        row = TestExecution(
            test_case_id=test_case_id,
            session_id=session_id,
            executed_by=executed_by,
            version=1,
            **state_to_columns(state)
        )
        try:
            existing = self._find(test_case_id, session_id)
            if existing:
                raise ExecutionConflictError(
                    "An execution for this test case was created by another writer",
                    current_version=existing.version
                )

            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        except IntegrityError as e:
            # Another writer inserted the pair between the lookup and the commit
            self.db.rollback()
            logger.warning(f"Duplicate execution insert for test case {test_case_id} (session={session_id})")
            existing = self._find(test_case_id, session_id)
            raise ExecutionConflictError(
                "An execution for this test case was created by another writer",
                current_version=existing.version if existing else None
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to insert execution for test case {test_case_id}: {str(e)}", exc_info=True)
            raise ExecutionStoreError("Failed to save progress") from e

        logger.debug(f"Inserted execution {row.id} for test case {test_case_id} (session={session_id})")
        return row_to_state(row)

    def update(
        self,
        execution_id: str,
        state: ExecutionState,
        expected_version: int,
        executed_by: Optional[str]
    ) -> ExecutionState:
        values = state_to_columns(state)
        values["version"] = expected_version + 1
        values["updated_at"] = datetime.utcnow()
        if executed_by:
            values["executed_by"] = executed_by

        try:
            updated = self.db.query(TestExecution).filter(
                TestExecution.id == execution_id,
                TestExecution.version == expected_version
            ).update(values, synchronize_session=False)

            if updated == 0:
                self.db.rollback()
                row = self.db.query(TestExecution).filter(TestExecution.id == execution_id).first()
                if row is None:
                    raise ExecutionStoreError(f"Execution {execution_id} no longer exists")
                raise ExecutionConflictError(
                    "Execution was modified by another writer; reload and try again",
                    current_version=row.version
                )

            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to update execution {execution_id}: {str(e)}", exc_info=True)
            raise ExecutionStoreError("Failed to save progress") from e

        row = self.db.query(TestExecution).filter(TestExecution.id == execution_id).first()
        self.db.refresh(row)
        return row_to_state(row)

