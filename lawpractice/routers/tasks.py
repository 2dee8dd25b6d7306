from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from ..database import get_db
from ..auth import get_current_user, get_current_admin_user
from ..exceptions import PracticeError
from ..models.enums import TaskPriority, TaskStatus
from ..models.schemas import TaskCreate, TaskUpdate, TaskResponse, TaskAssign
from ..services.task_service import task_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["Tasks"])

@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    task_data: TaskCreate,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a task; automation rules run for the new task."""
    try:
        return task_service.create_task(db, current_user, task_data.model_dump())
    except (HTTPException, PracticeError):
        raise
    except Exception as e:
        logger.error(f"Error creating task: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create task"
        )

@router.get("", response_model=List[TaskResponse])
def list_tasks(
    status_filter: Optional[TaskStatus] = Query(None, alias="status"),
    priority: Optional[TaskPriority] = None,
    case_id: Optional[int] = None,
    assignee_id: Optional[int] = None,
    mine: bool = False,
    skip: int = 0,
    limit: int = 100,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return task_service.list_tasks(
        db, current_user, status=status_filter, priority=priority, case_id=case_id,
        assignee_id=assignee_id, mine=mine, skip=skip, limit=limit
    )

@router.get("/my", response_model=List[TaskResponse])
def my_tasks(
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """The user's tasks, most urgent first."""
    return task_service.list_tasks(db, current_user, mine=True)

@router.post("/mark-overdue", response_model=List[TaskResponse])
def mark_overdue_tasks(
    current_user = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    return task_service.mark_overdue(db, firm_id=current_user.firm_id)

@router.get("/{task_id}", response_model=TaskResponse)
def get_task(
    task_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return task_service.get_task(db, current_user.firm_id, task_id)

@router.put("/{task_id}", response_model=TaskResponse)
def update_task(
    task_id: int,
    task_data: TaskUpdate,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return task_service.update_task(db, current_user.firm_id, task_id, task_data.model_dump(exclude_unset=True))

@router.delete("/{task_id}")
def delete_task(
    task_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    task_service.delete_task(db, current_user.firm_id, task_id)
    return {"message": "Task deleted successfully"}

@router.post("/{task_id}/start", response_model=TaskResponse)
def start_task(
    task_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return task_service.start_task(db, current_user, task_id)

@router.post("/{task_id}/complete", response_model=TaskResponse)
def complete_task(
    task_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return task_service.complete_task(db, current_user, task_id)
    except (HTTPException, PracticeError):
        raise
    except Exception as e:
        logger.error(f"Error completing task {task_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to complete task"
        )

@router.post("/{task_id}/cancel", response_model=TaskResponse)
def cancel_task(
    task_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return task_service.cancel_task(db, current_user, task_id)

@router.post("/{task_id}/assign", response_model=TaskResponse)
def assign_task(
    task_id: int,
    assignment: TaskAssign,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Assign to a user, or by workload when no user is given."""
    return task_service.assign_task(db, current_user, task_id, assignment.user_id)
