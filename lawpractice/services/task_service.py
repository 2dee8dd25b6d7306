import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..exceptions import ConflictError, NotFoundError, ValidationError
from ..models.database import Case, Task, User
from ..models.enums import (
    CasePhase, NotificationPriority, NotificationType, TaskPriority, TaskStatus
)
from ..utils import utcnow
from .notification_service import notification_service
from .rule_engine import rule_engine
from .task_assignment import pick_assignee, priority_weight
from .task_dependency_service import task_dependency_service

logger = logging.getLogger(__name__)

PHASE_TASK_TEMPLATES = {
    CasePhase.INTAKE_RISK_ASSESSMENT.value: {
        "due_in_days": 3,
        "tasks": [
            ("Conduct client intake interview", TaskPriority.HIGH),
            ("Run conflict of interest check", TaskPriority.HIGH),
            ("Prepare risk assessment memo", TaskPriority.MEDIUM),
        ],
    },
    CasePhase.PRE_PROCEEDING_PREP.value: {
        "due_in_days": 7,
        "tasks": [
            ("Complete legal research", TaskPriority.MEDIUM),
            ("Collect and organize evidence", TaskPriority.HIGH),
            ("Prepare witness list", TaskPriority.MEDIUM),
        ],
    },
    CasePhase.FORMAL_PROCEEDINGS.value: {
        "due_in_days": 14,
        "tasks": [
            ("File pleadings with the court", TaskPriority.HIGH),
            ("Prepare hearing materials", TaskPriority.MEDIUM),
        ],
    },
    CasePhase.RESOLUTION_POST.value: {
        "due_in_days": 10,
        "tasks": [
            ("Review judgment or settlement terms", TaskPriority.HIGH),
            ("Evaluate appeal options", TaskPriority.MEDIUM),
        ],
    },
    CasePhase.CLOSURE_REVIEW.value: {
        "due_in_days": 5,
        "tasks": [
            ("Send closing letter to client", TaskPriority.MEDIUM),
            ("Archive case file", TaskPriority.LOW),
        ],
    },
}

CLOSED_STATUSES = (TaskStatus.COMPLETED.value, TaskStatus.CANCELLED.value)


def priority_score(task: Task, now: Optional[datetime] = None) -> float:
    """Priority weight plus due-date urgency; higher sorts first."""
    now = now or utcnow()
    score = priority_weight(task.priority) * 10.0
    if task.due_date is None:
        return score

    days_left = (task.due_date - now).total_seconds() / 86400
    if days_left < 0:
        score += 30
    elif days_left <= 1:
        score += 20
    elif days_left <= 3:
        score += 10
    elif days_left <= 7:
        score += 5
    return score


class TaskService:
    def _fire(self, db: Session, firm_id: int, event_type: str, task: Optional[Task] = None,
              case: Optional[Case] = None, user: Optional[User] = None,
              data: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        context = rule_engine.build_context(event_type, task=task, case=case, user=user, data=data)
        return rule_engine.process_event(db, firm_id, event_type, context)

    def get_task(self, db: Session, firm_id: int, task_id: int) -> Task:
        task = db.query(Task).filter(Task.id == task_id, Task.firm_id == firm_id).first()
        if task is None:
            raise NotFoundError("Task not found")
        return task

    def _get_case(self, db: Session, firm_id: int, case_id: int) -> Case:
        case = db.query(Case).filter(Case.id == case_id, Case.firm_id == firm_id).first()
        if case is None:
            raise NotFoundError("Case not found")
        return case

    def _get_assignee(self, db: Session, firm_id: int, user_id: int) -> User:
        user = db.query(User).filter(User.id == user_id, User.firm_id == firm_id).first()
        if user is None:
            raise NotFoundError("User not found")
        if not user.is_active:
            raise ValidationError("Cannot assign tasks to an inactive user")
        return user

    def _notify_assigned(self, db: Session, task: Task, assignee: User):
        notification_service.notify(
            db, assignee, NotificationType.TASK_ASSIGNED, "New task assigned",
            f"You have been assigned '{task.title}'",
            priority=NotificationPriority.HIGH if task.priority == TaskPriority.URGENT.value
            else NotificationPriority.NORMAL,
            data={"task_id": task.id, "case_id": task.case_id},
        )

    def create_task(self, db: Session, user: User, data: Dict[str, Any], phase: Optional[str] = None,
                    commit: bool = True) -> Task:
        try:
            case = self._get_case(db, user.firm_id, data["case_id"]) if data.get("case_id") else None
            assignee = self._get_assignee(db, user.firm_id, data["assignee_id"]) if data.get("assignee_id") else None

            task = Task(
                firm_id=user.firm_id,
                title=data["title"],
                description=data.get("description"),
                status=TaskStatus.PENDING.value,
                priority=TaskPriority(data.get("priority") or TaskPriority.MEDIUM).value,
                due_date=data.get("due_date"),
                phase=phase,
                case_id=case.id if case else None,
                assignee_id=assignee.id if assignee else None,
                created_by_id=user.id,
            )
            db.add(task)
            db.flush()
            logger.info(f"Created task {task.id} '{task.title}' in firm {user.firm_id}")

            if assignee is not None:
                self._notify_assigned(db, task, assignee)
            self._fire(db, user.firm_id, "task_created", task=task, case=case, user=user)

            if commit:
                db.commit()
                db.refresh(task)
            return task

        except (NotFoundError, ValidationError):
            if commit:
                db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error creating task: {str(e)}")
            if commit:
                db.rollback()
            raise

    def list_tasks(
        self,
        db: Session,
        user: User,
        status: Optional[TaskStatus] = None,
        priority: Optional[TaskPriority] = None,
        case_id: Optional[int] = None,
        assignee_id: Optional[int] = None,
        mine: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Task]:
        query = db.query(Task).filter(Task.firm_id == user.firm_id)
        if status:
            query = query.filter(Task.status == status.value)
        if priority:
            query = query.filter(Task.priority == priority.value)
        if case_id is not None:
            query = query.filter(Task.case_id == case_id)
        if assignee_id is not None:
            query = query.filter(Task.assignee_id == assignee_id)

        if mine:
            tasks = query.filter(Task.assignee_id == user.id).all()
            now = utcnow()
            tasks.sort(key=lambda t: (-priority_score(t, now), t.id))
            return tasks[skip:skip + limit]

        return query.order_by(Task.id).offset(skip).limit(limit).all()

    def update_task(self, db: Session, firm_id: int, task_id: int, data: Dict[str, Any]) -> Task:
        task = self.get_task(db, firm_id, task_id)
        for key, value in data.items():
            if key == "priority" and value is not None:
                value = TaskPriority(value).value
            setattr(task, key, value)
        db.commit()
        db.refresh(task)
        logger.info(f"Updated task {task_id}")
        return task

    def delete_task(self, db: Session, firm_id: int, task_id: int):
        task = self.get_task(db, firm_id, task_id)
        db.delete(task)
        db.commit()
        logger.info(f"Deleted task {task_id}")

    def start_task(self, db: Session, user: User, task_id: int) -> Task:
        task = self.get_task(db, user.firm_id, task_id)
        if task.status in CLOSED_STATUSES or task.status == TaskStatus.IN_PROGRESS.value:
            raise ConflictError(f"Cannot start a task that is {task.status}")

        blockers = task_dependency_service.blocking_prerequisites(db, task)
        if blockers:
            raise ConflictError(
                "Task is blocked by incomplete prerequisites",
                errors=[f"{blocker.id}: {blocker.title}" for blocker in blockers]
            )

        task.status = TaskStatus.IN_PROGRESS.value
        task.started_at = utcnow()
        db.commit()
        db.refresh(task)
        logger.info(f"Task {task_id} started by {user.username}")
        return task

    def complete_task(self, db: Session, user: User, task_id: int) -> Task:
        task = self.get_task(db, user.firm_id, task_id)
        if task.status in CLOSED_STATUSES:
            raise ConflictError(f"Task is already {task.status}")

        task.status = TaskStatus.COMPLETED.value
        task.completed_at = utcnow()
        db.flush()

        for dependent in task_dependency_service.newly_unblocked(db, task):
            if dependent.assignee is not None:
                notification_service.notify(
                    db, dependent.assignee, NotificationType.TASK_ASSIGNED, "Task ready to start",
                    f"'{dependent.title}' is no longer blocked by '{task.title}'",
                    data={"task_id": dependent.id, "unblocked_by": task.id},
                )

        self._fire(db, user.firm_id, "task_completed", task=task, user=user)
        db.commit()
        db.refresh(task)
        logger.info(f"Task {task_id} completed by {user.username}")
        return task

    def cancel_task(self, db: Session, user: User, task_id: int) -> Task:
        task = self.get_task(db, user.firm_id, task_id)
        if task.status in CLOSED_STATUSES:
            raise ConflictError(f"Task is already {task.status}")
        task.status = TaskStatus.CANCELLED.value
        db.commit()
        db.refresh(task)
        logger.info(f"Task {task_id} cancelled by {user.username}")
        return task

    def assign_task(self, db: Session, user: User, task_id: int, assignee_id: Optional[int] = None) -> Task:
        task = self.get_task(db, user.firm_id, task_id)
        if task.status in CLOSED_STATUSES:
            raise ConflictError(f"Cannot assign a task that is {task.status}")

        if assignee_id is None:
            assignee = pick_assignee(db, task)
            if assignee is None:
                raise ValidationError("No eligible assignee available")
        else:
            assignee = self._get_assignee(db, user.firm_id, assignee_id)

        task.assignee_id = assignee.id
        db.flush()
        self._notify_assigned(db, task, assignee)
        db.commit()
        db.refresh(task)
        logger.info(f"Task {task_id} assigned to {assignee.username}")
        return task

    def mark_overdue(self, db: Session, firm_id: Optional[int] = None, now: Optional[datetime] = None) -> List[Task]:
        now = now or utcnow()
        query = db.query(Task).filter(
            Task.status.in_([TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value]),
            Task.due_date.isnot(None),
            Task.due_date < now
        )
        if firm_id is not None:
            query = query.filter(Task.firm_id == firm_id)

        overdue = query.all()
        for task in overdue:
            task.status = TaskStatus.OVERDUE.value
            db.flush()
            if task.assignee is not None:
                notification_service.notify(
                    db, task.assignee, NotificationType.TASK_DUE, "Task overdue",
                    f"'{task.title}' passed its due date", priority=NotificationPriority.HIGH,
                    data={"task_id": task.id}, now=now,
                )
            self._fire(db, task.firm_id, "task_overdue", task=task)

        db.commit()
        if overdue:
            logger.info(f"Marked {len(overdue)} tasks overdue")
        return overdue

    def generate_phase_tasks(self, db: Session, case: Case, phase: str, user: User,
                             now: Optional[datetime] = None) -> List[Task]:
        """Create the template tasks of a phase; the caller commits."""
        template = PHASE_TASK_TEMPLATES.get(phase)
        if template is None:
            return []

        now = now or utcnow()
        due_date = now + timedelta(days=template["due_in_days"])
        created = []
        for title, priority in template["tasks"]:
            task = self.create_task(
                db, user,
                {"title": title, "priority": priority, "due_date": due_date, "case_id": case.id,
                 "description": f"{title} for case {case.case_number}"},
                phase=phase,
                commit=False,
            )
            created.append(task)
        logger.info(f"Generated {len(created)} {phase} tasks for case {case.case_number}")
        return created


task_service = TaskService()
