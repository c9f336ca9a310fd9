"""
Execution Tracker

Keeps the execution snapshot of every loaded test case for one scope (a
test run session, or the unscoped executions) and applies operator actions
to it: toggling steps, failing steps, recording results and resetting.

Every action computes the next snapshot with the state machine, writes it
to the store, and only then replaces the tracker's snapshot. A failed write
leaves the snapshot untouched.
"""

from collections import Counter
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from core.logger import get_logger
from models.test_execution import ExecutionStatus, TERMINAL_STATUSES
from services.execution_state import (
    Event,
    ExecutionDetails,
    ExecutionState,
    ExecutionUpdate,
    FailStep,
    MarkResult,
    Reset,
    ToggleStep,
    TransitionRejected,
    merge_update,
    parse_status,
    transition,
)
from services.execution_store import ExecutionStore, ExecutionStoreError, ExecutionConflictError

logger = get_logger(__name__)

StatusChangeHook = Callable[[str, ExecutionStatus, ExecutionStatus], None]


class UnknownTestCaseError(LookupError):
    """Raised when an action targets a test case the tracker has not loaded."""


class InvalidStepError(ValueError):
    """Raised when a step number is not part of the test case."""


class DetailsRequiredError(ValueError):
    """Raised when a non-passing result is recorded without execution details."""


class ExecutionTracker:
    """
    Execution state per test case, written through to an ExecutionStore.

    Args:
        store: Persistence collaborator
        session_id: Test run session scope, None for unscoped executions
        executed_by: User id recorded on written rows
        default_environment: test_environment used when none was ever given
        clock: Returns the current UTC time
        on_status_change: Called with (test_case_id, old, new) after a write
            that changed the status
    """

    def __init__(
        self,
        store: ExecutionStore,
        session_id: Optional[str] = None,
        executed_by: Optional[str] = None,
        default_environment: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        on_status_change: Optional[StatusChangeHook] = None
    ):
        self.store = store
        self.session_id = session_id
        self.executed_by = executed_by
        self.default_environment = default_environment
        self.clock = clock
        self.on_status_change = on_status_change
        self._executions: Dict[str, ExecutionState] = {}
        self._steps: Dict[str, List[int]] = {}

    # Loading and reading

    def load(self, test_cases: Iterable) -> Dict[str, ExecutionState]:
        """
        Load executions for the given test cases.

        Each test case needs an ``id`` and ``step_numbers``. Test cases
        without a stored execution get the not_run default.

        Returns:
            dict: Snapshot per test case id
        """
        for test_case in test_cases:
            self._steps[test_case.id] = list(test_case.step_numbers)

        stored = self.store.select(self._steps.keys(), self.session_id)
        for test_case_id in self._steps:
            self._executions[test_case_id] = stored.get(test_case_id, ExecutionState.default())

        return dict(self._executions)

    @property
    def executions(self) -> Dict[str, ExecutionState]:
        return dict(self._executions)

    def get_execution(self, test_case_id: str) -> ExecutionState:
        try:
            return self._executions[test_case_id]
        except KeyError:
            raise UnknownTestCaseError(f"Test case {test_case_id} is not loaded")

    def stats(self) -> Dict[str, int]:
        """Count loaded test cases per execution status."""
        counts = Counter(state.status for state in self._executions.values())
        return {
            "total": len(self._executions),
            "passed": counts[ExecutionStatus.PASSED],
            "failed": counts[ExecutionStatus.FAILED],
            "blocked": counts[ExecutionStatus.BLOCKED],
            "skipped": counts[ExecutionStatus.SKIPPED],
            "in_progress": counts[ExecutionStatus.IN_PROGRESS],
            "not_run": counts[ExecutionStatus.NOT_RUN],
        }

    # Operator actions

    def toggle_step(self, test_case_id: str, step_number: int, expected_version: Optional[int] = None) -> ExecutionState:
        """Flip completion of a step. A not_run execution moves to in_progress."""
        self._check_step(test_case_id, step_number)
        return self._apply(test_case_id, ToggleStep(step_number), expected_version)

    def fail_step(
        self,
        test_case_id: str,
        step_number: int,
        reason: str = "",
        expected_version: Optional[int] = None
    ) -> ExecutionState:
        """Record why a step failed, replacing an earlier reason for the same step."""
        self._check_step(test_case_id, step_number)
        return self._apply(test_case_id, FailStep(step_number, reason), expected_version)

    def mark_test_result(
        self,
        test_case_id: str,
        status,
        details: Optional[ExecutionDetails] = None,
        expected_version: Optional[int] = None
    ) -> ExecutionState:
        """
        Record a final result.

        passed is saved straight away. failed, blocked and skipped need the
        execution details (environment, browser, OS, notes, failure reason)
        before anything is written.

        Raises:
            DetailsRequiredError: If details are missing for a non-passing result
            TransitionRejected: If status is not final or the result is locked
        """
        status = parse_status(status)
        if status not in TERMINAL_STATUSES:
            raise TransitionRejected(
                f"{status.value} is not a final result; use passed, failed, blocked or skipped"
            )

        if status == ExecutionStatus.PASSED:
            return self.save_execution_result(test_case_id, status, details or ExecutionDetails(), expected_version)

        if details is None:
            raise DetailsRequiredError(f"Execution details are required to mark a test as {status.value}")

        return self.save_execution_result(test_case_id, status, details, expected_version)

    def save_execution_result(
        self,
        test_case_id: str,
        status: ExecutionStatus,
        details: ExecutionDetails,
        expected_version: Optional[int] = None
    ) -> ExecutionState:
        """Persist a final result with its duration and details."""
        return self._apply(test_case_id, MarkResult(parse_status(status), details), expected_version)

    def reset_test(self, test_case_id: str, expected_version: Optional[int] = None) -> ExecutionState:
        """Clear the execution back to not_run. Allowed from any status."""
        return self._apply(test_case_id, Reset(), expected_version)

    def save_execution_progress(
        self,
        test_case_id: str,
        update: ExecutionUpdate,
        expected_version: Optional[int] = None
    ) -> ExecutionState:
        """
        Merge a partial update onto the known execution and write it.

        Inserts the row on the first write for this test case and scope,
        updates it afterwards.
        """
        current = self.get_execution(test_case_id)
        self._check_version(test_case_id, current, expected_version)
        next_state = merge_update(current, update, self.clock())
        return self._persist(test_case_id, current, next_state)

    # Internals

    def _check_step(self, test_case_id: str, step_number: int) -> None:
        steps = self._steps.get(test_case_id)
        if steps is None:
            raise UnknownTestCaseError(f"Test case {test_case_id} is not loaded")
        if step_number not in steps:
            raise InvalidStepError(f"Step {step_number} does not exist in test case {test_case_id}")

    def _check_version(self, test_case_id: str, current: ExecutionState, expected_version: Optional[int]) -> None:
        if expected_version is None:
            return
        if (current.version or 0) != expected_version:
            raise ExecutionConflictError(
                f"Execution of test case {test_case_id} changed since it was loaded",
                current_version=current.version
            )

    def _apply(self, test_case_id: str, event: Event, expected_version: Optional[int]) -> ExecutionState:
        current = self.get_execution(test_case_id)
        self._check_version(test_case_id, current, expected_version)
        next_state = transition(current, event, self.clock())
        return self._persist(test_case_id, current, next_state)

    def _persist(self, test_case_id: str, current: ExecutionState, next_state: ExecutionState) -> ExecutionState:
        if next_state.test_environment is None and self.default_environment:
            next_state = replace(next_state, test_environment=self.default_environment)

        try:
            if current.id:
                stored = self.store.update(current.id, next_state, current.version or 0, self.executed_by)
            else:
                stored = self.store.insert(test_case_id, self.session_id, next_state, self.executed_by)
        except ExecutionConflictError:
            logger.warning(f"Concurrent change detected on execution of test case {test_case_id}")
            raise
        except ExecutionStoreError as e:
            logger.error(f"Failed to save progress for test case {test_case_id}: {str(e)}")
            raise

        self._executions[test_case_id] = stored
        logger.info(
            f"Execution of test case {test_case_id} saved: "
            f"{current.status.value} -> {stored.status.value} (session={self.session_id})"
        )

        if self.on_status_change and stored.status != current.status:
            self.on_status_change(test_case_id, current.status, stored.status)

        return stored
