"""
Project Model

Groups test cases for a user. Used as a filter in the test case table.
"""

from sqlalchemy import Column, String, Index
from sqlalchemy.orm import relationship

from core.database import Base
from models.base import generate_uuid, TimestampMixin, format_utc_datetime


class Project(Base, TimestampMixin):
    """Project owned by a user."""

    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    color = Column(String(20), nullable=True)
    icon = Column(String(50), nullable=True)

    test_cases = relationship("TestCase", back_populates="project")

    __table_args__ = (
        Index('ix_projects_user_name', 'user_id', 'name'),
    )

    def __repr__(self):
        return f"<Project(id={self.id}, name={self.name})>"

    def to_dict(self):
        """Convert project to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "icon": self.icon,
            "created_at": format_utc_datetime(self.created_at),
        }
