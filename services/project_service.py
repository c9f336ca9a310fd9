"""
Project Service

Projects are the grouping used to filter the test case table.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from models.project import Project


class ProjectService:
    """Service for managing projects."""

    @staticmethod
    def create_project(
        user_id: str,
        name: str,
        db: Session,
        color: Optional[str] = None,
        icon: Optional[str] = None
    ) -> Project:
        project = Project(user_id=user_id, name=name, color=color, icon=icon)
        db.add(project)
        db.commit()
        db.refresh(project)
        return project

    @staticmethod
    def list_projects(user_id: str, db: Session) -> List[Project]:
        """Projects of a user ordered by name."""
        return db.query(Project).filter(Project.user_id == user_id).order_by(Project.name).all()
