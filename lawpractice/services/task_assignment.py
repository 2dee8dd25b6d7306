import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..models.database import Case, CaseTeamMember, Task, User
from ..models.enums import OPEN_TASK_STATUSES, PRIORITY_WEIGHTS, TaskPriority, UserRole

logger = logging.getLogger(__name__)

SENIOR_ROLES = [UserRole.LAWYER.value, UserRole.ADMIN.value]
GENERAL_ROLES = [UserRole.LAWYER.value, UserRole.PARALEGAL.value, UserRole.ASSISTANT.value]


def priority_weight(priority: Optional[str]) -> int:
    try:
        return PRIORITY_WEIGHTS[TaskPriority(priority)]
    except ValueError:
        return PRIORITY_WEIGHTS[TaskPriority.MEDIUM]


def workload(db: Session, user_id: int, exclude_task_id: Optional[int] = None) -> Dict[str, int]:
    """Weighted load and open task count of a user."""
    query = db.query(Task.priority).filter(
        Task.assignee_id == user_id,
        Task.status.in_(OPEN_TASK_STATUSES)
    )
    if exclude_task_id is not None:
        query = query.filter(Task.id != exclude_task_id)
    priorities = [row[0] for row in query.all()]
    return {"score": sum(priority_weight(p) for p in priorities), "open_tasks": len(priorities)}


def eligible_roles(task: Task) -> List[str]:
    if task.priority in (TaskPriority.HIGH.value, TaskPriority.URGENT.value):
        return SENIOR_ROLES
    return GENERAL_ROLES


def candidates_for(db: Session, task: Task) -> List[User]:
    roles = eligible_roles(task)
    candidates = db.query(User).filter(
        User.firm_id == task.firm_id,
        User.is_active.is_(True),
        User.role.in_(roles)
    ).all()

    if task.case_id is None:
        return candidates

    case = db.query(Case).filter(Case.id == task.case_id).first()
    case_people = {m.user_id for m in db.query(CaseTeamMember).filter(CaseTeamMember.case_id == task.case_id)}
    if case is not None and case.lead_lawyer_id:
        case_people.add(case.lead_lawyer_id)

    on_case = [user for user in candidates if user.id in case_people]
    return on_case or candidates


def pick_assignee(db: Session, task: Task) -> Optional[User]:
    """Least loaded eligible user; ties go to fewer open tasks, then username."""
    candidates = candidates_for(db, task)
    if not candidates:
        logger.warning(f"No eligible assignee for task {task.id} in firm {task.firm_id}")
        return None

    def sort_key(user: User):
        load = workload(db, user.id, exclude_task_id=task.id)
        return load["score"], load["open_tasks"], user.username

    return min(candidates, key=sort_key)
