"""
Execution State Machine

Pure rules for how a test case execution moves between statuses. Every
mutation of an execution goes through transition() (for user events) or
merge_update() (for raw partial updates); neither touches the database.

Status flow:
    not_run -> in_progress -> passed | failed | blocked | skipped
    any -> not_run (reset)

A final result is locked: once an execution is passed, failed, blocked or
skipped, the only accepted event is Reset.
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional, Tuple, Union

from models.test_execution import ExecutionStatus, TERMINAL_STATUSES

# Only these results stamp completed_at. Blocked and skipped runs are not
# considered complete and keep completed_at empty.
COMPLETION_STAMPED_STATUSES = frozenset({ExecutionStatus.PASSED, ExecutionStatus.FAILED})

DEFAULT_STEP_FAILURE_REASON = "Step failed"

# Keyboard shortcuts used by the execution view
SHORTCUT_STATUSES = {
    "p": ExecutionStatus.PASSED,
    "f": ExecutionStatus.FAILED,
    "b": ExecutionStatus.BLOCKED,
    "s": ExecutionStatus.SKIPPED,
}


class TransitionRejected(ValueError):
    """Raised when an event is not allowed from the current status."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class FailedStep:
    step_number: int
    failure_reason: str

    def to_dict(self) -> dict:
        return {"step_number": self.step_number, "failure_reason": self.failure_reason}


@dataclass(frozen=True)
class ExecutionDetails:
    """Details collected before committing a non-passing result."""
    notes: Optional[str] = None
    failure_reason: Optional[str] = None
    environment: Optional[str] = None
    browser: Optional[str] = None
    os_version: Optional[str] = None


@dataclass(frozen=True)
class ExecutionState:
    """
    Snapshot of one execution.

    id and version are None until the execution has been written to the store.
    completed_steps keeps insertion order but is compared as a set.
    """
    status: ExecutionStatus = ExecutionStatus.NOT_RUN
    completed_steps: Tuple[int, ...] = ()
    failed_steps: Tuple[FailedStep, ...] = ()
    notes: Optional[str] = None
    failure_reason: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    test_environment: Optional[str] = None
    browser: Optional[str] = None
    os_version: Optional[str] = None
    id: Optional[str] = None
    version: Optional[int] = None

    @classmethod
    def default(cls) -> "ExecutionState":
        return cls()

    @property
    def is_locked(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def failed_step(self, step_number: int) -> Optional[FailedStep]:
        for failed in self.failed_steps:
            if failed.step_number == step_number:
                return failed
        return None


# Events

@dataclass(frozen=True)
class ToggleStep:
    step_number: int


@dataclass(frozen=True)
class FailStep:
    step_number: int
    reason: str = ""


@dataclass(frozen=True)
class MarkResult:
    status: ExecutionStatus
    details: ExecutionDetails = field(default_factory=ExecutionDetails)


@dataclass(frozen=True)
class Reset:
    pass


Event = Union[ToggleStep, FailStep, MarkResult, Reset]


class _Unset:
    def __repr__(self):
        return "UNSET"


UNSET: Any = _Unset()


@dataclass(frozen=True)
class ExecutionUpdate:
    """
    Partial update of an execution.

    Fields left as UNSET keep the current value. Any other value, including
    None or an empty string, is written as given.
    """
    status: Any = UNSET
    completed_steps: Any = UNSET
    failed_steps: Any = UNSET
    notes: Any = UNSET
    failure_reason: Any = UNSET
    started_at: Any = UNSET
    completed_at: Any = UNSET
    duration_minutes: Any = UNSET
    test_environment: Any = UNSET
    browser: Any = UNSET
    os_version: Any = UNSET

    def provided(self) -> dict:
        """Return only the fields that were set."""
        return {
            name: getattr(self, name)
            for name in self.__dataclass_fields__
            if getattr(self, name) is not UNSET
        }


def parse_status(value: Union[str, ExecutionStatus]) -> ExecutionStatus:
    """
    Resolve a status name or a keyboard shortcut (P/F/B/S) to a status.

    Raises:
        ValueError: If the value is neither
    """
    if isinstance(value, ExecutionStatus):
        return value
    normalized = value.strip().lower()
    if normalized in SHORTCUT_STATUSES:
        return SHORTCUT_STATUSES[normalized]
    try:
        return ExecutionStatus(normalized)
    except ValueError:
        raise ValueError(f"Unknown execution status: {value}")


def compute_duration_minutes(started_at: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole minutes between started_at and now, rounded half up. None without a start."""
    if started_at is None:
        return None
    minutes = (now - started_at).total_seconds() / 60
    return int(math.floor(minutes + 0.5))


def _toggle(steps: Tuple[int, ...], step_number: int) -> Tuple[int, ...]:
    if step_number in steps:
        return tuple(s for s in steps if s != step_number)
    return steps + (step_number,)


def _ensure_unlocked(current: ExecutionState) -> None:
    if current.is_locked:
        raise TransitionRejected(
            f"Execution is already {current.status.value}; reset the test to run it again"
        )


def _start(current: ExecutionState, now: datetime) -> dict:
    """Fields for moving into (or staying in) in_progress."""
    return {
        "status": ExecutionStatus.IN_PROGRESS,
        "started_at": current.started_at or now,
        "completed_at": None,
    }


def transition(current: ExecutionState, event: Event, now: datetime) -> ExecutionState:
    """
    Compute the execution that results from applying event to current.

    Args:
        current: Current execution snapshot
        event: ToggleStep, FailStep, MarkResult or Reset
        now: Timestamp used for started_at, completed_at and duration

    Returns:
        ExecutionState: The next snapshot (id and version are carried over)

    Raises:
        TransitionRejected: If the event is not allowed from current.status
    """
    if isinstance(event, Reset):
        return replace(
            ExecutionState.default(),
            notes="",
            failure_reason="",
            test_environment=current.test_environment,
            browser=current.browser,
            os_version=current.os_version,
            id=current.id,
            version=current.version,
        )

    if isinstance(event, ToggleStep):
        _ensure_unlocked(current)
        return replace(
            current,
            completed_steps=_toggle(current.completed_steps, event.step_number),
            **_start(current, now)
        )

    if isinstance(event, FailStep):
        _ensure_unlocked(current)
        failed = tuple(f for f in current.failed_steps if f.step_number != event.step_number)
        failed += (FailedStep(event.step_number, event.reason or DEFAULT_STEP_FAILURE_REASON),)
        return replace(current, failed_steps=failed, **_start(current, now))

    if isinstance(event, MarkResult):
        if event.status not in TERMINAL_STATUSES:
            raise TransitionRejected(
                f"{event.status.value} is not a final result; use passed, failed, blocked or skipped"
            )
        _ensure_unlocked(current)
        details = event.details
        return replace(
            current,
            status=event.status,
            completed_at=now if event.status in COMPLETION_STAMPED_STATUSES else None,
            duration_minutes=compute_duration_minutes(current.started_at, now),
            notes=details.notes if details.notes is not None else current.notes,
            failure_reason=(
                details.failure_reason if details.failure_reason is not None else current.failure_reason
            ),
            test_environment=details.environment or current.test_environment,
            browser=details.browser or current.browser,
            os_version=details.os_version or current.os_version,
        )

    raise TypeError(f"Unsupported execution event: {event!r}")


def check_status_change(current: ExecutionStatus, new: ExecutionStatus) -> None:
    """
    Validate a raw status change.

    Raises:
        TransitionRejected: If the change goes back to not_run (only a reset
            may do that) or leaves a locked result
    """
    if new == current:
        return
    if new == ExecutionStatus.NOT_RUN:
        raise TransitionRejected("Use reset to put an execution back to not_run")
    if current in TERMINAL_STATUSES:
        raise TransitionRejected(
            f"Execution is already {current.value}; reset the test to run it again"
        )


def merge_update(current: ExecutionState, update: ExecutionUpdate, now: datetime) -> ExecutionState:
    """
    Merge a partial update onto current, applying the timestamp rules.

    started_at is set on the first move into in_progress and kept until
    reset. completed_at is stamped when the update sets a status listed in
    COMPLETION_STAMPED_STATUSES and cleared for non-final statuses.

    Raises:
        TransitionRejected: If the status change is not allowed, or steps
            change while the result is locked
    """
    values = update.provided()
    new_status = parse_status(values.get("status", current.status))
    check_status_change(current.status, new_status)

    touches_steps = "completed_steps" in values or "failed_steps" in values
    if touches_steps and new_status in TERMINAL_STATUSES and current.status in TERMINAL_STATUSES:
        raise TransitionRejected(
            f"Execution is already {current.status.value}; reset the test to run it again"
        )

    if "completed_steps" in values:
        values["completed_steps"] = tuple(values["completed_steps"])
    if "failed_steps" in values:
        values["failed_steps"] = tuple(
            f if isinstance(f, FailedStep) else FailedStep(f["step_number"], f["failure_reason"])
            for f in values["failed_steps"]
        )
    values["status"] = new_status

    merged = replace(current, **values)

    if new_status == ExecutionStatus.IN_PROGRESS and merged.started_at is None:
        merged = replace(merged, started_at=now)

    if "completed_at" not in values:
        if "status" in update.provided() and new_status in COMPLETION_STAMPED_STATUSES:
            merged = replace(merged, completed_at=now)
        elif new_status not in TERMINAL_STATUSES:
            merged = replace(merged, completed_at=None)

    return merged
