# tests/test_tasks.py

from __future__ import annotations

from datetime import timedelta

import pytest

from lawpractice.exceptions import ConflictError, ValidationError
from lawpractice.models.database import Notification, TaskDependency
from lawpractice.models.enums import DependencyType, NotificationType, TaskPriority, TaskStatus
from lawpractice.services.task_dependency_service import task_dependency_service
from lawpractice.services.task_service import priority_score, task_service
from lawpractice.utils import utcnow


def _task(db, user, case, title, **extra):
    return task_service.create_task(db, user, dict({"title": title, "case_id": case.id}, **extra))


def _notifications(db, user, notification_type):
    return db.query(Notification).filter(
        Notification.user_id == user.id,
        Notification.notification_type == notification_type.value
    ).all()


def test_new_task_is_assigned_by_workload_rule(db, case, lawyer) -> None:
    task = _task(db, lawyer, case, "Draft demand letter")
    assert task.assignee_id == lawyer.id
    assert task.status == TaskStatus.PENDING.value
    assert len(_notifications(db, lawyer, NotificationType.TASK_ASSIGNED)) == 1


def test_dependency_cycle_is_rejected(db, case, lawyer) -> None:
    first = _task(db, lawyer, case, "Collect invoices")
    second = _task(db, lawyer, case, "Compute damages")
    third = _task(db, lawyer, case, "File claim")

    task_dependency_service.create_dependency(db, case.firm_id, second.id, first.id)
    task_dependency_service.create_dependency(db, case.firm_id, third.id, second.id)

    with pytest.raises(ValidationError) as exc_info:
        task_dependency_service.create_dependency(db, case.firm_id, first.id, third.id)
    assert "would create a cycle" in exc_info.value.detail

    with pytest.raises(ValidationError):
        task_dependency_service.create_dependency(db, case.firm_id, first.id, first.id)
    with pytest.raises(ConflictError):
        task_dependency_service.create_dependency(db, case.firm_id, second.id, first.id)


def test_bulk_create_reports_failures(db, case, lawyer) -> None:
    first = _task(db, lawyer, case, "Collect invoices")
    second = _task(db, lawyer, case, "Compute damages")

    result = task_dependency_service.bulk_create_dependencies(db, case.firm_id, [
        {"task_id": second.id, "depends_on_id": first.id},
        {"task_id": first.id, "depends_on_id": second.id},
        {"task_id": first.id, "depends_on_id": 9999},
    ])
    assert len(result["created"]) == 1
    assert len(result["failed"]) == 2


def test_blocked_task_cannot_start_until_prerequisite_completes(db, case, lawyer) -> None:
    research = _task(db, lawyer, case, "Legal research")
    brief = _task(db, lawyer, case, "Write brief")
    task_dependency_service.create_dependency(db, case.firm_id, brief.id, research.id)

    with pytest.raises(ConflictError) as exc_info:
        task_service.start_task(db, lawyer, brief.id)
    assert exc_info.value.errors == [f"{research.id}: Legal research"]

    graph = task_dependency_service.dependency_graph(db, case.firm_id, case_id=case.id)
    blocked = {node["id"]: node["is_blocked"] for node in graph["nodes"]}
    assert blocked == {research.id: False, brief.id: True}
    assert graph["edges"][0]["from"] == research.id

    task_service.complete_task(db, lawyer, research.id)

    ready = [n for n in _notifications(db, lawyer, NotificationType.TASK_ASSIGNED) if n.title == "Task ready to start"]
    assert len(ready) == 1
    assert ready[0].data["task_id"] == brief.id
    assert len(_notifications(db, lawyer, NotificationType.TASK_COMPLETED)) == 1

    started = task_service.start_task(db, lawyer, brief.id)
    assert started.status == TaskStatus.IN_PROGRESS.value


def test_non_blocking_dependency_does_not_block(db, case, lawyer) -> None:
    first = _task(db, lawyer, case, "Prepare exhibits")
    second = _task(db, lawyer, case, "Rehearse testimony")
    task_dependency_service.create_dependency(db, case.firm_id, second.id, first.id, DependencyType.PARALLEL)

    assert task_service.start_task(db, lawyer, second.id).status == TaskStatus.IN_PROGRESS.value


def test_completed_task_cannot_complete_again(db, case, lawyer) -> None:
    task = _task(db, lawyer, case, "Send engagement letter")
    task_service.complete_task(db, lawyer, task.id)
    with pytest.raises(ConflictError):
        task_service.complete_task(db, lawyer, task.id)


def test_overdue_tasks_are_escalated(db, case, lawyer) -> None:
    task = _task(db, lawyer, case, "Serve notice", due_date=utcnow() - timedelta(days=1))

    overdue = task_service.mark_overdue(db, firm_id=case.firm_id)

    assert [t.id for t in overdue] == [task.id]
    db.refresh(task)
    assert task.status == TaskStatus.OVERDUE.value
    assert task.priority == TaskPriority.HIGH.value
    assert len(_notifications(db, lawyer, NotificationType.TASK_ESCALATED)) == 1
    assert len(_notifications(db, lawyer, NotificationType.TASK_DUE)) == 1


def test_my_tasks_sorted_by_priority_score(db, case, lawyer) -> None:
    now = utcnow()
    low = _task(db, lawyer, case, "Tidy file", priority=TaskPriority.LOW)
    urgent_soon = _task(db, lawyer, case, "Answer court", priority=TaskPriority.HIGH,
                        due_date=now + timedelta(hours=12))
    medium = _task(db, lawyer, case, "Call client")

    assert priority_score(urgent_soon, now) == 50.0
    mine = task_service.list_tasks(db, lawyer, mine=True)
    assert [t.id for t in mine] == [urgent_soon.id, medium.id, low.id]


def test_validation_splits_blocking_errors_from_sequential_warnings(db, case, lawyer) -> None:
    evidence = _task(db, lawyer, case, "Gather evidence")
    witnesses = _task(db, lawyer, case, "Interview witnesses")
    filing = _task(db, lawyer, case, "File statement of claim")
    task_dependency_service.create_dependency(db, case.firm_id, filing.id, evidence.id)
    task_dependency_service.create_dependency(db, case.firm_id, filing.id, witnesses.id, DependencyType.SEQUENTIAL)

    report = task_dependency_service.validate_dependencies(db, case.firm_id, filing.id)
    assert report["valid"] is False
    assert report["errors"] == [f"Blocked by incomplete task {evidence.id}: Gather evidence"]
    assert report["warnings"] == [f"Sequential prerequisite {witnesses.id} has not started: Interview witnesses"]
    assert report["cycles"] == []

    task_service.complete_task(db, lawyer, evidence.id)

    report = task_dependency_service.validate_dependencies(db, case.firm_id, filing.id)
    assert report["valid"] is True
    assert len(report["warnings"]) == 1


def test_validation_lists_cycles(db, case, lawyer) -> None:
    first = _task(db, lawyer, case, "Draft settlement")
    second = _task(db, lawyer, case, "Client sign-off")
    task_dependency_service.create_dependency(db, case.firm_id, second.id, first.id)
    db.add(TaskDependency(task_id=first.id, depends_on_id=second.id, dependency_type=DependencyType.BLOCKING.value))
    db.commit()

    report = task_dependency_service.validate_dependencies(db, case.firm_id, first.id)

    assert report["cycles"] == [[first.id, second.id, first.id]]
    assert f"Circular dependency: {first.id} -> {second.id} -> {first.id}" in report["errors"]


def test_auto_resolve_and_retype(db, case, lawyer) -> None:
    research = _task(db, lawyer, case, "Research precedent")
    drafting = _task(db, lawyer, case, "Draft opinion")
    opinion = _task(db, lawyer, case, "Send opinion")
    task_dependency_service.create_dependency(db, case.firm_id, opinion.id, research.id)
    remaining = task_dependency_service.create_dependency(db, case.firm_id, opinion.id, drafting.id)

    assert task_dependency_service.auto_resolve(db, case.firm_id, opinion.id) == 0
    task_service.complete_task(db, lawyer, research.id)
    assert task_dependency_service.auto_resolve(db, case.firm_id, opinion.id) == 1

    left = task_dependency_service.dependencies_of(db, case.firm_id, opinion.id)
    assert [d.depends_on_id for d in left] == [drafting.id]

    retyped = task_dependency_service.update_dependency_type(db, case.firm_id, remaining.id, DependencyType.PARALLEL)
    assert retyped.dependency_type == "PARALLEL"
    assert task_service.start_task(db, lawyer, opinion.id).status == TaskStatus.IN_PROGRESS.value
