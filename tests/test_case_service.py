# tests/test_case_service.py

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from lawpractice.exceptions import NotFoundError, TransitionError, ValidationError
from lawpractice.models.database import CasePhaseHistory, Client, Notification, Task
from lawpractice.models.enums import CasePhase, CaseStatus, CaseType, NotificationType, TaskPriority
from lawpractice.services.case_service import case_service
from lawpractice.services.tenancy_service import tenancy_service
from lawpractice.utils import utcnow

PREP = CasePhase.PRE_PROCEEDING_PREP
READY_FOR_PREP = {"initialEvidence": "Signed bill of lading", "riskAssessmentCompleted": True}


def test_new_case_is_draft_intake_with_lead_on_team(db, case, lawyer) -> None:
    assert case.case_number == f"CASE-{utcnow().year}-0001"
    assert case.status == CaseStatus.DRAFT.value
    assert case.phase == CasePhase.INTAKE_RISK_ASSESSMENT.value

    team = case_service.list_team(db, case.firm_id, case.id)
    assert [(member.user_id, member.role) for member in team] == [(lawyer.id, "lead")]

    history = case_service.phase_history(db, case.firm_id, case.id)
    assert len(history) == 1
    assert history[0].end_date is None


def test_case_numbers_increase_per_firm(db, case, lawyer, client_record) -> None:
    second, warnings = case_service.create_case(db, lawyer, {
        "title": "Second matter",
        "case_type": CaseType.SPECIAL_MATTER,
        "client_id": client_record.id,
    })
    assert second.case_number == f"CASE-{utcnow().year}-0002"
    assert warnings and "matterDescription" in warnings[0]


def test_prohibited_details_reject_creation(db, lawyer, client_record) -> None:
    with pytest.raises(ValidationError) as exc_info:
        case_service.create_case(db, lawyer, {
            "title": "Wrongful dismissal",
            "case_type": CaseType.LABOR_DISPUTE,
            "client_id": client_record.id,
            "details": {"criminalRecord": "none"},
        })
    assert "criminalRecord" in exc_info.value.errors[0]


def test_client_of_another_firm_is_not_found(db, lawyer) -> None:
    other_firm, _ = tenancy_service.register_firm(db, "Wang Law", "wang", "wang@wanglaw.cn", "password123")
    foreign = Client(firm_id=other_firm.id, first_name="Zhao", last_name="Min")
    db.add(foreign)
    db.commit()

    with pytest.raises(NotFoundError):
        case_service.create_case(db, lawyer, {
            "title": "Not ours",
            "case_type": CaseType.CONTRACT_DISPUTE,
            "client_id": foreign.id,
        })


def test_transition_activates_case_and_generates_tasks(db, case, lawyer) -> None:
    result = case_service.transition_phase(db, lawyer, case.id, PREP, reason="Risk reviewed",
                                           details=READY_FOR_PREP)

    moved = result["case"]
    assert moved.phase == PREP.value
    assert moved.status == CaseStatus.ACTIVE.value
    assert moved.details["riskAssessmentCompleted"] is True

    tasks = result["created_tasks"]
    assert [task.priority for task in tasks] == [
        TaskPriority.MEDIUM.value, TaskPriority.HIGH.value, TaskPriority.MEDIUM.value,
    ]
    assert all(task.phase == PREP.value for task in tasks)
    assert all(task.assignee_id == lawyer.id for task in tasks)

    # No intake documents were uploaded for the contract dispute.
    assert len(result["warnings"]) == 3

    history = db.query(CasePhaseHistory).filter(CasePhaseHistory.case_id == case.id).order_by(
        CasePhaseHistory.id).all()
    assert [entry.phase for entry in history] == [CasePhase.INTAKE_RISK_ASSESSMENT.value, PREP.value]
    assert history[0].end_date is not None
    assert history[1].notes == "Risk reviewed"

    assigned = db.query(Notification).filter(
        Notification.user_id == lawyer.id,
        Notification.notification_type == NotificationType.TASK_ASSIGNED.value
    ).count()
    assert assigned == 3


def test_transition_warns_when_phase_overran(db, case, lawyer) -> None:
    intake = db.query(CasePhaseHistory).filter(CasePhaseHistory.case_id == case.id).one()
    intake.start_date = utcnow() - timedelta(days=50)
    db.commit()

    result = case_service.transition_phase(db, lawyer, case.id, PREP, details=READY_FOR_PREP)

    assert result["warnings"][-1] == (
        "Phase INTAKE_RISK_ASSESSMENT has run 50 days, exceeding the 45-day limit for CONTRACT_DISPUTE"
    )
    assert len(result["warnings"]) == 4


def test_transition_with_missing_fields_is_rejected(db, case, lawyer) -> None:
    with pytest.raises(TransitionError) as exc_info:
        case_service.transition_phase(db, lawyer, case.id, PREP)
    assert "initialEvidence" in exc_info.value.detail
    assert db.query(Task).count() == 0


def test_paralegal_cannot_transition(db, case, paralegal) -> None:
    with pytest.raises(TransitionError) as exc_info:
        case_service.transition_phase(db, paralegal, case.id, PREP, details=READY_FOR_PREP)
    assert exc_info.value.errors == ["Insufficient permissions for transition"]


def test_cancelled_case_is_locked(db, case, lawyer) -> None:
    case_service.change_status(db, lawyer, case.id, CaseStatus.CANCELLED, reason="Client withdrew")

    with pytest.raises(TransitionError):
        case_service.transition_phase(db, lawyer, case.id, PREP, details=READY_FOR_PREP)
    assert case_service.available_transitions(db, lawyer, case.id) == []


def test_invalid_status_change(db, case, lawyer) -> None:
    with pytest.raises(TransitionError):
        case_service.change_status(db, lawyer, case.id, CaseStatus.ON_HOLD)


def test_closing_from_intake_completes_case(db, case, lawyer, admin) -> None:
    case_service.add_team_member(db, case.firm_id, case.id, admin.id, role="partner")

    result = case_service.transition_phase(db, lawyer, case.id, CasePhase.CLOSURE_REVIEW,
                                           details={"caseRejected": True})
    closed = result["case"]
    assert closed.status == CaseStatus.COMPLETED.value
    assert closed.actual_end_date is not None

    updates = db.query(Notification).filter(
        Notification.user_id == admin.id,
        Notification.notification_type == NotificationType.CASE_UPDATE.value
    ).all()
    assert len(updates) == 1


def test_update_case_merges_details(db, case) -> None:
    updated = case_service.update_case(db, case.firm_id, case.id, {
        "settlement_amount": Decimal("120000"),
        "details": {"initialEvidence": "Invoices"},
    })
    assert updated.details["clientInformation"] == "Chen Jing"
    assert updated.details["initialEvidence"] == "Invoices"
    assert updated.settlement_amount == Decimal("120000")


def test_checklist_reports_missing_intake_fields(db, case) -> None:
    checklist = case_service.checklist(db, case.firm_id, case.id)
    assert checklist["present"] == ["clientInformation", "caseDescription"]
    assert checklist["missing"] == ["initialContactDate"]
