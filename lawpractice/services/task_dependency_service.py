import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..exceptions import ConflictError, NotFoundError, ValidationError
from ..models.database import Task, TaskDependency
from ..models.enums import DependencyType, TaskStatus

logger = logging.getLogger(__name__)


class TaskDependencyService:
    """Directed prerequisite edges between tasks of one firm.

    An edge ``(task_id, depends_on_id)`` means ``task_id`` waits on
    ``depends_on_id``. The graph is kept acyclic.
    """

    def _get_task(self, db: Session, firm_id: int, task_id: int) -> Task:
        task = db.query(Task).filter(Task.id == task_id, Task.firm_id == firm_id).first()
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def _get_dependency(self, db: Session, firm_id: int, dependency_id: int) -> TaskDependency:
        dependency = db.query(TaskDependency).join(Task, TaskDependency.task_id == Task.id).filter(
            TaskDependency.id == dependency_id,
            Task.firm_id == firm_id
        ).first()
        if dependency is None:
            raise NotFoundError("Dependency not found")
        return dependency

    def _prerequisites(self, db: Session, task_id: int) -> List[int]:
        rows = db.query(TaskDependency.depends_on_id).filter(TaskDependency.task_id == task_id).all()
        return [row[0] for row in rows]

    def find_path(self, db: Session, start_id: int, target_id: int) -> Optional[List[int]]:
        """DFS along prerequisite edges from ``start_id``; the path to ``target_id`` if reachable."""
        stack = [(start_id, [start_id])]
        visited = set()
        while stack:
            node, path = stack.pop()
            if node == target_id:
                return path
            if node in visited:
                continue
            visited.add(node)
            for nxt in self._prerequisites(db, node):
                if nxt not in visited:
                    stack.append((nxt, path + [nxt]))
        return None

    def create_dependency(self, db: Session, firm_id: int, task_id: int, depends_on_id: int,
                          dependency_type: DependencyType = DependencyType.BLOCKING,
                          commit: bool = True) -> TaskDependency:
        self._get_task(db, firm_id, task_id)
        self._get_task(db, firm_id, depends_on_id)

        if task_id == depends_on_id:
            raise ValidationError("A task cannot depend on itself")

        existing = db.query(TaskDependency).filter(
            TaskDependency.task_id == task_id,
            TaskDependency.depends_on_id == depends_on_id
        ).first()
        if existing is not None:
            raise ConflictError("Dependency already exists")

        path = self.find_path(db, depends_on_id, task_id)
        if path is not None:
            cycle = " -> ".join(str(node) for node in [task_id] + path)
            raise ValidationError(f"Dependency would create a cycle: {cycle}")

        dependency = TaskDependency(
            task_id=task_id,
            depends_on_id=depends_on_id,
            dependency_type=DependencyType(dependency_type).value,
        )
        db.add(dependency)
        if commit:
            db.commit()
            db.refresh(dependency)
        else:
            db.flush()

        logger.info(f"Task {task_id} now depends on task {depends_on_id} ({dependency.dependency_type})")
        return dependency

    def bulk_create_dependencies(self, db: Session, firm_id: int,
                                 items: List[Dict[str, Any]]) -> Dict[str, List]:
        created = []
        failed = []
        for item in items:
            try:
                dependency = self.create_dependency(
                    db, firm_id, item["task_id"], item["depends_on_id"],
                    item.get("dependency_type", DependencyType.BLOCKING),
                    commit=False,
                )
                created.append(dependency)
            except (NotFoundError, ValidationError, ConflictError) as e:
                logger.warning(f"Skipped dependency {item.get('task_id')} -> {item.get('depends_on_id')}: {e.detail}")
                failed.append({"task_id": item.get("task_id"), "depends_on_id": item.get("depends_on_id"),
                               "error": e.detail})
        db.commit()
        for dependency in created:
            db.refresh(dependency)
        return {"created": created, "failed": failed}

    def dependencies_of(self, db: Session, firm_id: int, task_id: int) -> List[TaskDependency]:
        self._get_task(db, firm_id, task_id)
        return db.query(TaskDependency).filter(TaskDependency.task_id == task_id).all()

    def dependents_of(self, db: Session, firm_id: int, task_id: int) -> List[TaskDependency]:
        self._get_task(db, firm_id, task_id)
        return db.query(TaskDependency).filter(TaskDependency.depends_on_id == task_id).all()

    def blocking_prerequisites(self, db: Session, task: Task) -> List[Task]:
        """Incomplete BLOCKING prerequisites of a task."""
        return db.query(Task).join(TaskDependency, TaskDependency.depends_on_id == Task.id).filter(
            TaskDependency.task_id == task.id,
            TaskDependency.dependency_type == DependencyType.BLOCKING.value,
            Task.status != TaskStatus.COMPLETED.value
        ).all()

    def can_start(self, db: Session, task: Task) -> bool:
        return not self.blocking_prerequisites(db, task)

    def find_cycles(self, db: Session, task_id: int) -> List[List[int]]:
        """Cycles passing through a task, if any slipped in."""
        cycles = []
        for prerequisite in self._prerequisites(db, task_id):
            path = self.find_path(db, prerequisite, task_id)
            if path is not None:
                cycles.append([task_id] + path)
        return cycles

    def validate_dependencies(self, db: Session, firm_id: int, task_id: int) -> Dict[str, Any]:
        self._get_task(db, firm_id, task_id)
        errors = []
        warnings = []

        rows = db.query(TaskDependency, Task).join(Task, TaskDependency.depends_on_id == Task.id).filter(
            TaskDependency.task_id == task_id
        ).all()
        for dependency, prerequisite in rows:
            if (dependency.dependency_type == DependencyType.BLOCKING.value
                    and prerequisite.status != TaskStatus.COMPLETED.value):
                errors.append(f"Blocked by incomplete task {prerequisite.id}: {prerequisite.title}")
            elif (dependency.dependency_type == DependencyType.SEQUENTIAL.value
                    and prerequisite.status == TaskStatus.PENDING.value):
                warnings.append(f"Sequential prerequisite {prerequisite.id} has not started: {prerequisite.title}")

        cycles = self.find_cycles(db, task_id)
        for cycle in cycles:
            errors.append("Circular dependency: " + " -> ".join(str(node) for node in cycle))

        return {"valid": not errors, "errors": errors, "warnings": warnings, "cycles": cycles}

    def dependency_graph(self, db: Session, firm_id: int, case_id: Optional[int] = None) -> Dict[str, List]:
        query = db.query(Task).filter(Task.firm_id == firm_id)
        if case_id is not None:
            query = query.filter(Task.case_id == case_id)
        tasks = query.order_by(Task.id).all()
        task_ids = {task.id for task in tasks}
        status_by_id = {task.id: task.status for task in tasks}

        dependencies = db.query(TaskDependency).filter(TaskDependency.task_id.in_(task_ids)).all() if task_ids else []

        blocking_counts = {task_id: 0 for task_id in task_ids}
        for dependency in dependencies:
            if dependency.dependency_type != DependencyType.BLOCKING.value:
                continue
            prerequisite_status = status_by_id.get(dependency.depends_on_id)
            if prerequisite_status is None:
                prerequisite = db.query(Task.status).filter(Task.id == dependency.depends_on_id).first()
                prerequisite_status = prerequisite[0] if prerequisite else None
            if prerequisite_status != TaskStatus.COMPLETED.value:
                blocking_counts[dependency.task_id] += 1

        nodes = [{
            "id": task.id,
            "title": task.title,
            "status": task.status,
            "priority": task.priority,
            "assignee_id": task.assignee_id,
            "is_blocked": blocking_counts[task.id] > 0,
            "blocking_count": blocking_counts[task.id],
        } for task in tasks]
        edges = [{
            "id": dependency.id,
            "from": dependency.depends_on_id,
            "to": dependency.task_id,
            "type": dependency.dependency_type,
        } for dependency in dependencies]
        return {"nodes": nodes, "edges": edges}

    def blocked_tasks(self, db: Session, firm_id: int, case_id: Optional[int] = None) -> List[Task]:
        query = db.query(Task).filter(
            Task.firm_id == firm_id,
            Task.status.in_([TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value, TaskStatus.OVERDUE.value])
        )
        if case_id is not None:
            query = query.filter(Task.case_id == case_id)
        return [task for task in query.order_by(Task.id).all() if not self.can_start(db, task)]

    def newly_unblocked(self, db: Session, completed_task: Task) -> List[Task]:
        """Dependents whose BLOCKING prerequisites are now all complete."""
        dependents = db.query(Task).join(TaskDependency, TaskDependency.task_id == Task.id).filter(
            TaskDependency.depends_on_id == completed_task.id,
            TaskDependency.dependency_type == DependencyType.BLOCKING.value,
            Task.status.in_([TaskStatus.PENDING.value, TaskStatus.OVERDUE.value])
        ).all()
        return [task for task in dependents if self.can_start(db, task)]

    def auto_resolve(self, db: Session, firm_id: int, task_id: int) -> int:
        """Drop edges of a task whose prerequisite is already complete."""
        self._get_task(db, firm_id, task_id)
        resolved = [
            dependency for dependency, prerequisite in
            db.query(TaskDependency, Task).join(Task, TaskDependency.depends_on_id == Task.id).filter(
                TaskDependency.task_id == task_id,
                Task.status == TaskStatus.COMPLETED.value
            ).all()
        ]
        for dependency in resolved:
            db.delete(dependency)
        db.commit()
        logger.info(f"Auto-resolved {len(resolved)} dependencies of task {task_id}")
        return len(resolved)

    def update_dependency_type(self, db: Session, firm_id: int, dependency_id: int,
                               dependency_type: DependencyType) -> TaskDependency:
        dependency = self._get_dependency(db, firm_id, dependency_id)
        dependency.dependency_type = DependencyType(dependency_type).value
        db.commit()
        db.refresh(dependency)
        logger.info(f"Dependency {dependency_id} changed to {dependency.dependency_type}")
        return dependency

    def delete_dependency(self, db: Session, firm_id: int, dependency_id: int):
        dependency = self._get_dependency(db, firm_id, dependency_id)
        db.delete(dependency)
        db.commit()
        logger.info(f"Deleted dependency {dependency_id}")


task_dependency_service = TaskDependencyService()
