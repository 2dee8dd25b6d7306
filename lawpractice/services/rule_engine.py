"""Rule-based task automation.

Rules are stored per firm and fire on named events (``task_created``,
``task_completed``, ``task_overdue``, ``phase_changed``...). Each rule has
weighted conditions over a context of dotted paths and a list of actions.
"""
import logging
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import NotFoundError, ValidationError
from ..models.database import AutomationRule, Case, Task, User
from ..models.enums import NotificationPriority, NotificationType, TaskPriority, TaskStatus
from ..utils import get_path, utcnow
from .notification_service import notification_service
from .task_assignment import pick_assignee

logger = logging.getLogger(__name__)

PRIORITY_LADDER = [TaskPriority.LOW.value, TaskPriority.MEDIUM.value, TaskPriority.HIGH.value,
                   TaskPriority.URGENT.value]

DEFAULT_RULES = [
    {
        "name": "Workload-Based Assignment",
        "description": "Assign new unassigned tasks to the least loaded eligible member",
        "category": "task_assignment",
        "trigger_event": "task_created",
        "priority": 10,
        "match": "all",
        "conditions": [{"field": "task.assignee_id", "operator": "not_exists", "value": None, "weight": 1.0}],
        "actions": [{"type": "assign_task", "parameters": {}, "failure_strategy": "continue"}],
    },
    {
        "name": "Urgent Task Alert",
        "description": "Alert the lead lawyer when an urgent task is created",
        "category": "deadline_management",
        "trigger_event": "task_created",
        "priority": 20,
        "match": "all",
        "conditions": [{"field": "task.priority", "operator": "equals", "value": "URGENT", "weight": 1.0}],
        "actions": [{
            "type": "send_notification",
            "parameters": {
                "recipient": "lead_lawyer",
                "notification_type": "TASK_DUE",
                "priority": "URGENT",
                "title": "Urgent task created",
                "message": "Urgent task '{task_title}' needs attention",
            },
            "failure_strategy": "continue",
        }],
    },
    {
        "name": "Overdue Task Escalation",
        "description": "Escalate tasks that pass their due date",
        "category": "escalation",
        "trigger_event": "task_overdue",
        "priority": 10,
        "match": "all",
        "conditions": [{"field": "task.status", "operator": "equals", "value": "OVERDUE", "weight": 1.0}],
        "actions": [{"type": "escalate_task", "parameters": {}, "failure_strategy": "continue"}],
    },
    {
        "name": "Completion Follow-up",
        "description": "Tell the task creator when a task is completed",
        "category": "quality_control",
        "trigger_event": "task_completed",
        "priority": 50,
        "match": "all",
        "conditions": [],
        "actions": [{
            "type": "send_notification",
            "parameters": {
                "recipient": "creator",
                "notification_type": "TASK_COMPLETED",
                "title": "Task completed",
                "message": "Task '{task_title}' has been completed",
            },
            "failure_strategy": "continue",
        }],
    },
]


class _TemplateValues(dict):
    def __missing__(self, key):
        return "{" + key + "}"


def _compare(left: Any, right: Any, op) -> bool:
    if left is None or right is None:
        return False
    try:
        return op(float(left), float(right))
    except (TypeError, ValueError):
        try:
            return op(left, right)
        except TypeError:
            return False


class BusinessRuleEngine:
    def build_context(self, event_type: str, task: Optional[Task] = None, case: Optional[Case] = None,
                      user: Optional[User] = None, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if case is None and task is not None:
            case = task.case
        return {
            "event": dict(data or {}, type=event_type),
            "task": task,
            "case": case,
            "user": user,
        }

    # Conditions

    def evaluate_condition(self, condition: Dict[str, Any], context: Dict[str, Any]) -> bool:
        value = get_path(context, condition["field"])
        expected = condition.get("value")
        operator = condition.get("operator")

        if operator == "equals":
            return value == expected
        if operator == "not_equals":
            return value != expected
        if operator == "contains":
            return isinstance(value, (list, tuple, str)) and expected in value
        if operator == "exists":
            return value is not None
        if operator == "not_exists":
            return value is None
        if operator == "greater_than":
            return _compare(value, expected, lambda a, b: a > b)
        if operator == "less_than":
            return _compare(value, expected, lambda a, b: a < b)
        if operator == "in":
            return isinstance(expected, list) and value in expected
        if operator == "not_in":
            return isinstance(expected, list) and value not in expected
        if operator == "matches_pattern":
            try:
                return value is not None and re.search(str(expected), str(value)) is not None
            except re.error:
                logger.warning(f"Invalid pattern in rule condition: {expected}")
                return False

        logger.warning(f"Unknown rule condition operator: {operator}")
        return False

    def evaluate_conditions(self, conditions: List[Dict[str, Any]], context: Dict[str, Any],
                            match: str = "all") -> Dict[str, Any]:
        """Weighted match of a rule's conditions.

        ``score`` is the weighted share of matched conditions (0-100) and
        ``confidence`` the plain fraction matched.
        """
        if not conditions:
            return {"matched": True, "score": 100.0, "confidence": 1.0}

        total_weight = 0.0
        matched_weight = 0.0
        matched_count = 0
        for condition in conditions:
            weight = float(condition.get("weight") or 1.0)
            total_weight += weight
            if self.evaluate_condition(condition, context):
                matched_count += 1
                matched_weight += weight

        if match == "any":
            matched = matched_count > 0
        else:
            matched = matched_count == len(conditions)

        score = round(matched_weight / total_weight * 100, 2) if total_weight else 0.0
        return {"matched": matched, "score": score, "confidence": round(matched_count / len(conditions), 4)}

    # Actions

    def _recipients(self, db: Session, recipient: str, context: Dict[str, Any], firm_id: int) -> List[User]:
        task = context.get("task")
        case = context.get("case")
        if recipient == "assignee":
            return [task.assignee] if task is not None and task.assignee else []
        if recipient == "creator":
            return [task.created_by] if task is not None and task.created_by else []
        if recipient == "lead_lawyer":
            if case is not None and case.lead_lawyer:
                return [case.lead_lawyer]
            return notification_service.firm_admins(db, firm_id)
        if recipient == "admins":
            return notification_service.firm_admins(db, firm_id)
        raise ValidationError(f"Unknown notification recipient: {recipient}")

    def _template_values(self, context: Dict[str, Any]) -> _TemplateValues:
        task = context.get("task")
        case = context.get("case")
        return _TemplateValues(
            task_title=task.title if task is not None else "",
            task_priority=task.priority if task is not None else "",
            case_number=case.case_number if case is not None else "",
            case_title=case.title if case is not None else "",
            phase=case.phase if case is not None else "",
        )

    def _require_task(self, context: Dict[str, Any]) -> Task:
        task = context.get("task")
        if task is None:
            raise ValidationError("Action requires a task in the event context")
        return task

    def execute_action(self, db: Session, action: Dict[str, Any], context: Dict[str, Any],
                       firm_id: int) -> Dict[str, Any]:
        action_type = action.get("type")
        params = action.get("parameters") or {}

        if action_type == "assign_task":
            task = self._require_task(context)
            if params.get("user_id"):
                assignee = db.query(User).filter(
                    User.id == params["user_id"], User.firm_id == firm_id, User.is_active.is_(True)
                ).first()
            else:
                assignee = pick_assignee(db, task)
            if assignee is None:
                raise ValidationError("No eligible assignee found")
            task.assignee_id = assignee.id
            task.assignee = assignee
            notification_service.notify(
                db, assignee, NotificationType.TASK_ASSIGNED, "New task assigned",
                f"You have been assigned '{task.title}'",
                data={"task_id": task.id}
            )
            return {"assignee_id": assignee.id}

        if action_type == "change_priority":
            task = self._require_task(context)
            task.priority = TaskPriority(params.get("priority")).value
            return {"priority": task.priority}

        if action_type == "set_deadline":
            task = self._require_task(context)
            days = int(params.get("days_from_now", 1))
            task.due_date = utcnow() + timedelta(days=days)
            return {"due_date": task.due_date.isoformat()}

        if action_type == "update_status":
            task = self._require_task(context)
            task.status = TaskStatus(params.get("status")).value
            if task.status == TaskStatus.COMPLETED.value and task.completed_at is None:
                task.completed_at = utcnow()
            return {"status": task.status}

        if action_type == "send_notification":
            values = self._template_values(context)
            title = params.get("title", "Automation notice").format_map(values)
            message = params.get("message", title).format_map(values)
            recipients = self._recipients(db, params.get("recipient", "assignee"), context, firm_id)
            created = notification_service.notify_many(
                db, recipients,
                NotificationType(params.get("notification_type", NotificationType.SYSTEM.value)),
                title, message,
                priority=NotificationPriority(params.get("priority", NotificationPriority.NORMAL.value)),
                data={"task_id": getattr(context.get("task"), "id", None),
                      "case_id": getattr(context.get("case"), "id", None)},
            )
            return {"notified": len(created)}

        if action_type == "escalate_task":
            task = self._require_task(context)
            current = PRIORITY_LADDER.index(task.priority) if task.priority in PRIORITY_LADDER else 1
            task.priority = PRIORITY_LADDER[min(current + 1, len(PRIORITY_LADDER) - 1)]
            recipients = self._recipients(db, "lead_lawyer", context, firm_id)
            notification_service.notify_many(
                db, recipients, NotificationType.TASK_ESCALATED, "Task escalated",
                f"Task '{task.title}' has been escalated to {task.priority}",
                priority=NotificationPriority.HIGH,
                data={"task_id": task.id},
            )
            return {"priority": task.priority, "notified": len(recipients)}

        raise ValidationError(f"Unknown action type: {action_type}")

    # Events

    def process_event(self, db: Session, firm_id: int, event_type: str,
                      context: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Run the firm's active rules for an event, lowest priority number first.

        Failures are captured per rule; nothing raised here reaches the caller.
        """
        if not settings.automation_enabled:
            return []

        rules = db.query(AutomationRule).filter(
            AutomationRule.firm_id == firm_id,
            AutomationRule.trigger_event == event_type,
            AutomationRule.is_active.is_(True)
        ).order_by(AutomationRule.priority, AutomationRule.id).all()

        results = []
        for rule in rules:
            result = {"rule_id": rule.id, "rule_name": rule.name, "matched": False,
                      "score": 0.0, "confidence": 0.0, "actions": [], "error": None}
            try:
                evaluation = self.evaluate_conditions(rule.conditions or [], context, rule.match or "all")
                result.update(evaluation)
                if not evaluation["matched"]:
                    results.append(result)
                    continue

                rule.trigger_count = (rule.trigger_count or 0) + 1
                rule.last_triggered_at = utcnow()
                failed = False

                for action in rule.actions or []:
                    try:
                        outcome = self.execute_action(db, action, context, firm_id)
                        result["actions"].append({"type": action.get("type"), "success": True, "result": outcome})
                    except Exception as e:
                        failed = True
                        logger.warning(f"Rule '{rule.name}' action {action.get('type')} failed: {str(e)}")
                        result["actions"].append({"type": action.get("type"), "success": False, "error": str(e)})
                        if action.get("failure_strategy") == "stop":
                            break

                if failed:
                    rule.failure_count = (rule.failure_count or 0) + 1
                else:
                    rule.success_count = (rule.success_count or 0) + 1

            except Exception as e:
                logger.error(f"Error evaluating rule '{rule.name}' for {event_type}: {str(e)}")
                rule.failure_count = (rule.failure_count or 0) + 1
                result["error"] = str(e)

            results.append(result)

        db.flush()
        fired = sum(1 for r in results if r["matched"])
        logger.info(f"Event {event_type} in firm {firm_id}: {fired}/{len(results)} rules fired")
        return results

    # Rule management

    def seed_default_rules(self, db: Session, firm_id: int) -> List[AutomationRule]:
        rules = []
        for definition in DEFAULT_RULES:
            rule = AutomationRule(firm_id=firm_id, is_active=True, **definition)
            db.add(rule)
            rules.append(rule)
        db.flush()
        logger.info(f"Seeded {len(rules)} default automation rules for firm {firm_id}")
        return rules

    def list_rules(self, db: Session, firm_id: int, trigger_event: Optional[str] = None,
                   active_only: bool = False) -> List[AutomationRule]:
        query = db.query(AutomationRule).filter(AutomationRule.firm_id == firm_id)
        if trigger_event:
            query = query.filter(AutomationRule.trigger_event == trigger_event)
        if active_only:
            query = query.filter(AutomationRule.is_active.is_(True))
        return query.order_by(AutomationRule.priority, AutomationRule.id).all()

    def get_rule(self, db: Session, firm_id: int, rule_id: int) -> AutomationRule:
        rule = db.query(AutomationRule).filter(
            AutomationRule.id == rule_id, AutomationRule.firm_id == firm_id
        ).first()
        if rule is None:
            raise NotFoundError("Automation rule not found")
        return rule

    def create_rule(self, db: Session, firm_id: int, data: Dict[str, Any]) -> AutomationRule:
        rule = AutomationRule(firm_id=firm_id, **data)
        db.add(rule)
        db.commit()
        db.refresh(rule)
        logger.info(f"Created automation rule '{rule.name}' for firm {firm_id}")
        return rule

    def update_rule(self, db: Session, firm_id: int, rule_id: int, data: Dict[str, Any]) -> AutomationRule:
        rule = self.get_rule(db, firm_id, rule_id)
        for key, value in data.items():
            setattr(rule, key, value)
        db.commit()
        db.refresh(rule)
        logger.info(f"Updated automation rule {rule_id}")
        return rule

    def delete_rule(self, db: Session, firm_id: int, rule_id: int):
        rule = self.get_rule(db, firm_id, rule_id)
        db.delete(rule)
        db.commit()
        logger.info(f"Deleted automation rule {rule_id}")

    def stats(self, db: Session, firm_id: int) -> Dict[str, Any]:
        rules = self.list_rules(db, firm_id)
        triggers = sum(r.trigger_count or 0 for r in rules)
        successes = sum(r.success_count or 0 for r in rules)
        failures = sum(r.failure_count or 0 for r in rules)
        by_category = dict(
            db.query(AutomationRule.category, func.count(AutomationRule.id))
            .filter(AutomationRule.firm_id == firm_id)
            .group_by(AutomationRule.category).all()
        )
        return {
            "total_rules": len(rules),
            "active_rules": sum(1 for r in rules if r.is_active),
            "total_triggers": triggers,
            "successful_executions": successes,
            "failed_executions": failures,
            "success_rate": round(successes / triggers, 4) if triggers else 0.0,
            "by_category": by_category,
        }


rule_engine = BusinessRuleEngine()
