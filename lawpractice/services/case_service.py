import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import ConflictError, NotFoundError, TransitionError, ValidationError
from ..models.database import Case, CasePhaseHistory, CaseTeamMember, Client, Document, Task, User
from ..models.enums import CasePhase, CaseStatus, CaseType, NotificationType
from ..utils import utcnow
from .case_state_machine import CaseState, case_state_machine
from .case_validators import case_type_validator, phase_validator
from .notification_service import notification_service
from .rule_engine import rule_engine
from .task_service import task_service

logger = logging.getLogger(__name__)


class CaseService:
    """Case records, their team and their movement through phases and statuses."""

    def get_case(self, db: Session, firm_id: int, case_id: int) -> Case:
        case = db.query(Case).filter(Case.id == case_id, Case.firm_id == firm_id).first()
        if case is None:
            raise NotFoundError("Case not found")
        return case

    def _firm_user(self, db: Session, firm_id: int, user_id: int) -> User:
        user = db.query(User).filter(User.id == user_id, User.firm_id == firm_id).first()
        if user is None:
            raise NotFoundError("User not found")
        return user

    def _next_case_number(self, db: Session, firm_id: int, year: int) -> str:
        prefix = f"CASE-{year}-"
        numbers = db.query(Case.case_number).filter(
            Case.firm_id == firm_id,
            Case.case_number.like(f"{prefix}%")
        ).all()
        highest = 0
        for (number,) in numbers:
            suffix = number[len(prefix):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return f"{prefix}{highest + 1:04d}"

    def _state(self, case: Case) -> CaseState:
        return CaseState(phase=case.phase, status=case.status, case_type=case.case_type,
                         details=dict(case.details or {}))

    def _open_history(self, db: Session, case: Case) -> Optional[CasePhaseHistory]:
        return db.query(CasePhaseHistory).filter(
            CasePhaseHistory.case_id == case.id,
            CasePhaseHistory.end_date.is_(None)
        ).order_by(CasePhaseHistory.id.desc()).first()

    def _case_people(self, db: Session, case: Case) -> List[User]:
        people = [case.lead_lawyer] if case.lead_lawyer else []
        for member in db.query(CaseTeamMember).filter(CaseTeamMember.case_id == case.id).all():
            people.append(member.user)
        return people

    def _notify_case(self, db: Session, case: Case, actor: User, title: str, message: str,
                     data: Optional[Dict[str, Any]] = None):
        recipients = [person for person in self._case_people(db, case) if person.id != actor.id]
        notification_service.notify_many(
            db, recipients, NotificationType.CASE_UPDATE, title, message,
            data=dict(data or {}, case_id=case.id)
        )

    def create_case(self, db: Session, user: User, data: Dict[str, Any]) -> Tuple[Case, List[str]]:
        try:
            client = db.query(Client).filter(Client.id == data["client_id"], Client.firm_id == user.firm_id).first()
            if client is None:
                raise NotFoundError("Client not found")

            lead_lawyer = self._firm_user(db, user.firm_id, data.get("lead_lawyer_id") or user.id)
            if not lead_lawyer.is_active:
                raise ValidationError("Lead lawyer account is inactive")

            case_type = CaseType(data["case_type"]).value
            details = dict(data.get("details") or {})
            errors, warnings = case_type_validator.validate_creation(case_type, details)
            if errors:
                raise ValidationError("Case details failed validation", errors=errors)

            now = utcnow()
            start_date = data.get("start_date") or now
            case = Case(
                firm_id=user.firm_id,
                case_number=self._next_case_number(db, user.firm_id, start_date.year),
                title=data["title"],
                description=data.get("description"),
                case_type=case_type,
                phase=CasePhase.INTAKE_RISK_ASSESSMENT.value,
                status=CaseStatus.DRAFT.value,
                start_date=start_date,
                expected_end_date=data.get("expected_end_date"),
                claim_amount=data.get("claim_amount"),
                client_id=client.id,
                lead_lawyer_id=lead_lawyer.id,
                details=details,
            )
            db.add(case)
            db.flush()

            db.add(CasePhaseHistory(
                case_id=case.id,
                phase=case.phase,
                start_date=now,
                notes="Case opened",
                changed_by_id=user.id,
            ))
            db.add(CaseTeamMember(case_id=case.id, user_id=lead_lawyer.id, role="lead"))

            db.commit()
            db.refresh(case)
            logger.info(f"Created case {case.case_number} ({case_type}) in firm {user.firm_id}")
            return case, warnings

        except (NotFoundError, ValidationError):
            db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error creating case: {str(e)}")
            db.rollback()
            raise

    def list_cases(
        self,
        db: Session,
        firm_id: int,
        status: Optional[CaseStatus] = None,
        phase: Optional[CasePhase] = None,
        case_type: Optional[CaseType] = None,
        client_id: Optional[int] = None,
        lead_lawyer_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Case]:
        query = db.query(Case).filter(Case.firm_id == firm_id)
        if status:
            query = query.filter(Case.status == status.value)
        if phase:
            query = query.filter(Case.phase == phase.value)
        if case_type:
            query = query.filter(Case.case_type == case_type.value)
        if client_id is not None:
            query = query.filter(Case.client_id == client_id)
        if lead_lawyer_id is not None:
            query = query.filter(Case.lead_lawyer_id == lead_lawyer_id)
        return query.order_by(Case.id.desc()).offset(skip).limit(limit).all()

    def update_case(self, db: Session, firm_id: int, case_id: int, data: Dict[str, Any]) -> Case:
        case = self.get_case(db, firm_id, case_id)

        if data.get("lead_lawyer_id"):
            self._firm_user(db, firm_id, data["lead_lawyer_id"])

        details = data.pop("details", None)
        for key, value in data.items():
            setattr(case, key, value)
        if details:
            case.details = {**(case.details or {}), **details}

        db.commit()
        db.refresh(case)
        logger.info(f"Updated case {case.case_number}")
        return case

    def change_status(self, db: Session, user: User, case_id: int, target: CaseStatus,
                      reason: Optional[str] = None) -> Case:
        case = self.get_case(db, user.firm_id, case_id)
        target_value = CaseStatus(target).value

        if not phase_validator.can_change_status(case.status, target_value):
            raise TransitionError(
                f"Cannot change status from {case.status} to {target_value}",
                errors=[f"Invalid status transition from {case.status} to {target_value}"]
            )

        previous = case.status
        case.status = target_value
        if target_value == CaseStatus.COMPLETED.value:
            case.actual_end_date = utcnow()

        self._notify_case(
            db, case, user, f"Case {case.case_number} is now {target_value}",
            reason or f"Status changed from {previous} to {target_value}",
            data={"from_status": previous, "to_status": target_value},
        )
        db.commit()
        db.refresh(case)
        logger.info(f"Case {case.case_number} status {previous} -> {target_value} by {user.username}")
        return case

    def transition_phase(
        self,
        db: Session,
        user: User,
        case_id: int,
        target_phase: CasePhase,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        case = self.get_case(db, user.firm_id, case_id)
        target = CasePhase(target_phase).value

        if case_state_machine.is_locked(case.status):
            raise TransitionError(f"Case is {case.status} and cannot change phase",
                                  errors=[f"Case status {case.status} does not allow phase transitions"])

        merged = {**(case.details or {}), **(details or {})}
        result = case_state_machine.can_transition(self._state(case), target, user.role, merged)
        if not result.success:
            logger.info(f"Rejected transition of {case.case_number} to {target}: {result.message}")
            raise TransitionError(result.message, errors=result.errors)

        try:
            now = utcnow()
            previous = case.phase

            open_entry = self._open_history(db, case)
            categories = [row[0] for row in db.query(Document.category).filter(
                Document.case_id == case.id, Document.is_latest.is_(True)
            ).all()]
            warnings = case_type_validator.document_warnings(case.case_type, previous, categories)
            warnings += case_type_validator.timeline_warnings(
                case.case_type, previous, open_entry.start_date if open_entry else case.start_date, now
            )

            if open_entry is not None:
                open_entry.end_date = now
            db.add(CasePhaseHistory(
                case_id=case.id,
                phase=target,
                start_date=now,
                notes=reason,
                changed_by_id=user.id,
            ))

            case.details = merged
            case.phase = target
            if case.status == CaseStatus.DRAFT.value:
                case.status = CaseStatus.ACTIVE.value
            if target == CasePhase.CLOSURE_REVIEW.value:
                case.status = CaseStatus.COMPLETED.value
                case.actual_end_date = now
            db.flush()

            created_tasks: List[Task] = []
            if settings.auto_generate_phase_tasks:
                created_tasks = task_service.generate_phase_tasks(db, case, target, user, now=now)

            context = rule_engine.build_context(
                "phase_changed", case=case, user=user,
                data={"from_phase": previous, "to_phase": target, "reason": reason}
            )
            rule_engine.process_event(db, user.firm_id, "phase_changed", context)

            self._notify_case(
                db, case, user, f"Case {case.case_number} moved to {target}",
                reason or f"Phase changed from {previous} to {target}",
                data={"from_phase": previous, "to_phase": target},
            )

            db.commit()
            db.refresh(case)
            for task in created_tasks:
                db.refresh(task)
            logger.info(f"Case {case.case_number} phase {previous} -> {target} by {user.username}")
            return {"case": case, "created_tasks": created_tasks, "warnings": warnings}

        except Exception as e:
            logger.error(f"Error transitioning case {case_id}: {str(e)}")
            db.rollback()
            raise

    def available_transitions(self, db: Session, user: User, case_id: int) -> List[Dict[str, Any]]:
        case = self.get_case(db, user.firm_id, case_id)
        if case_state_machine.is_locked(case.status):
            return []
        return [t.as_dict() for t in case_state_machine.available_transitions(self._state(case), user.role)]

    def phase_history(self, db: Session, firm_id: int, case_id: int) -> List[CasePhaseHistory]:
        case = self.get_case(db, firm_id, case_id)
        return db.query(CasePhaseHistory).filter(CasePhaseHistory.case_id == case.id).order_by(
            CasePhaseHistory.id
        ).all()

    def checklist(self, db: Session, firm_id: int, case_id: int) -> Dict[str, Any]:
        case = self.get_case(db, firm_id, case_id)
        return phase_validator.checklist(case.phase, case.case_type, case.details)

    def add_team_member(self, db: Session, firm_id: int, case_id: int, user_id: int,
                        role: str = "member") -> CaseTeamMember:
        case = self.get_case(db, firm_id, case_id)
        member_user = self._firm_user(db, firm_id, user_id)

        existing = db.query(CaseTeamMember).filter(
            CaseTeamMember.case_id == case.id,
            CaseTeamMember.user_id == member_user.id
        ).first()
        if existing is not None:
            raise ConflictError("User is already on the case team")

        member = CaseTeamMember(case_id=case.id, user_id=member_user.id, role=role)
        db.add(member)
        db.commit()
        db.refresh(member)
        logger.info(f"Added {member_user.username} to case {case.case_number} as {role}")
        return member

    def remove_team_member(self, db: Session, firm_id: int, case_id: int, user_id: int):
        case = self.get_case(db, firm_id, case_id)
        member = db.query(CaseTeamMember).filter(
            CaseTeamMember.case_id == case.id,
            CaseTeamMember.user_id == user_id
        ).first()
        if member is None:
            raise NotFoundError("Team member not found")
        db.delete(member)
        db.commit()
        logger.info(f"Removed user {user_id} from case {case.case_number}")

    def list_team(self, db: Session, firm_id: int, case_id: int) -> List[CaseTeamMember]:
        case = self.get_case(db, firm_id, case_id)
        return db.query(CaseTeamMember).filter(CaseTeamMember.case_id == case.id).order_by(CaseTeamMember.id).all()


case_service = CaseService()
