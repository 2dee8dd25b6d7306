from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from ..database import get_db
from ..auth import get_current_user
from ..models.schemas import (
    DependencyCreate, DependencyTypeUpdate, DependencyResponse, BulkDependencyCreate,
    BulkDependencyResult, DependencyValidation, DependencyGraph, TaskResponse
)
from ..services.task_dependency_service import task_dependency_service
from ..services.task_service import task_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dependencies", tags=["Task Dependencies"])

@router.post("", response_model=DependencyResponse, status_code=status.HTTP_201_CREATED)
async def create_dependency(
    dependency: DependencyCreate,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Make a task depend on another; cycles are rejected."""
    return task_dependency_service.create_dependency(
        db, current_user.firm_id, dependency.task_id, dependency.depends_on_id, dependency.dependency_type
    )

@router.post("/bulk", response_model=BulkDependencyResult)
async def bulk_create_dependencies(
    payload: BulkDependencyCreate,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return task_dependency_service.bulk_create_dependencies(
        db, current_user.firm_id, [item.model_dump() for item in payload.dependencies]
    )

@router.get("/graph", response_model=DependencyGraph)
async def dependency_graph(
    case_id: Optional[int] = None,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return task_dependency_service.dependency_graph(db, current_user.firm_id, case_id)

@router.get("/blocked", response_model=List[TaskResponse])
async def blocked_tasks(
    case_id: Optional[int] = None,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return task_dependency_service.blocked_tasks(db, current_user.firm_id, case_id)

@router.get("/tasks/{task_id}", response_model=List[DependencyResponse])
async def task_dependencies(
    task_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Prerequisites of a task."""
    return task_dependency_service.dependencies_of(db, current_user.firm_id, task_id)

@router.get("/tasks/{task_id}/dependents", response_model=List[DependencyResponse])
async def task_dependents(
    task_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return task_dependency_service.dependents_of(db, current_user.firm_id, task_id)

@router.get("/tasks/{task_id}/validate", response_model=DependencyValidation)
async def validate_dependencies(
    task_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return task_dependency_service.validate_dependencies(db, current_user.firm_id, task_id)

@router.get("/tasks/{task_id}/can-start")
async def can_start(
    task_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    task = task_service.get_task(db, current_user.firm_id, task_id)
    blockers = task_dependency_service.blocking_prerequisites(db, task)
    return {
        "task_id": task.id,
        "can_start": not blockers,
        "blocking_tasks": [{"id": blocker.id, "title": blocker.title, "status": blocker.status}
                           for blocker in blockers]
    }

@router.post("/tasks/{task_id}/auto-resolve")
async def auto_resolve(
    task_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Drop the edges whose prerequisite is already complete."""
    removed = task_dependency_service.auto_resolve(db, current_user.firm_id, task_id)
    return {"task_id": task_id, "removed": removed}

@router.patch("/{dependency_id}", response_model=DependencyResponse)
async def update_dependency_type(
    dependency_id: int,
    update: DependencyTypeUpdate,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return task_dependency_service.update_dependency_type(
        db, current_user.firm_id, dependency_id, update.dependency_type
    )

@router.delete("/{dependency_id}")
async def delete_dependency(
    dependency_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    task_dependency_service.delete_dependency(db, current_user.firm_id, dependency_id)
    return {"message": "Dependency deleted successfully"}
