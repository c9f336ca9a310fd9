"""
Project Routes
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from core.database import get_db
from api.dependencies import get_current_user_id
from services.project_service import ProjectService

router = APIRouter()


class CreateProjectRequest(BaseModel):
    """Request model for creating a project."""
    name: str = Field(..., min_length=1, max_length=255)
    color: Optional[str] = None
    icon: Optional[str] = None


@router.get("")
async def list_projects(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    return [project.to_dict() for project in ProjectService.list_projects(user_id, db)]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_project(
    payload: CreateProjectRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    project = ProjectService.create_project(user_id, payload.name.strip(), db, payload.color, payload.icon)
    return project.to_dict()
