"""
Database Models Package

Contains all SQLAlchemy models for the application.
"""

from models.project import Project
from models.test_case import TestCase, TestCasePriority, TestCaseStatus
from models.test_execution import TestExecution, ExecutionStatus, TERMINAL_STATUSES
from models.test_run_session import TestRunSession, SessionStatus
from models.base import generate_uuid, TimestampMixin

__all__ = [
    "Project",
    "TestCase",
    "TestCasePriority",
    "TestCaseStatus",
    "TestExecution",
    "ExecutionStatus",
    "TERMINAL_STATUSES",
    "TestRunSession",
    "SessionStatus",
    "generate_uuid",
    "TimestampMixin",
]
