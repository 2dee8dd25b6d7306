"""Case phase state machine.

Base transitions apply to every case type. A case-type workflow can replace
the base transition for the same (from, to) pair with stricter conditions
and required fields.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..models.enums import CasePhase, CaseType, CaseStatus, UserRole

logger = logging.getLogger(__name__)

DEFAULT_ROLES = (UserRole.LAWYER, UserRole.ADMIN)


@dataclass
class TransitionCondition:
    field: str
    operator: str  # equals | not_equals | contains | exists | not_exists
    value: Any = None

    def describe(self) -> str:
        if self.operator in ("exists", "not_exists"):
            return f"{self.field} {self.operator}"
        return f"{self.field} {self.operator} {self.value}"


@dataclass
class StateTransition:
    from_phase: CasePhase
    to_phase: CasePhase
    allowed_roles: Tuple[UserRole, ...] = DEFAULT_ROLES
    conditions: List[TransitionCondition] = field(default_factory=list)
    required_fields: List[str] = field(default_factory=list)
    description: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return {
            "from_phase": self.from_phase.value,
            "to_phase": self.to_phase.value,
            "description": self.description,
            "allowed_roles": [role.value for role in self.allowed_roles],
            "required_fields": list(self.required_fields),
            "conditions": [
                {"field": c.field, "operator": c.operator, "value": c.value} for c in self.conditions
            ],
        }


@dataclass
class CaseState:
    phase: str
    status: str
    case_type: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TransitionResult:
    success: bool
    message: str = ""
    errors: List[str] = field(default_factory=list)


def _equals(name: str, value: Any = True) -> TransitionCondition:
    return TransitionCondition(name, "equals", value)


def _exists(name: str) -> TransitionCondition:
    return TransitionCondition(name, "exists")


INTAKE = CasePhase.INTAKE_RISK_ASSESSMENT
PREP = CasePhase.PRE_PROCEEDING_PREP
PROCEEDINGS = CasePhase.FORMAL_PROCEEDINGS
RESOLUTION = CasePhase.RESOLUTION_POST
CLOSURE = CasePhase.CLOSURE_REVIEW

BASE_TRANSITIONS = [
    StateTransition(INTAKE, PREP, conditions=[_equals("riskAssessmentCompleted")],
                    required_fields=["clientInformation", "caseDescription", "initialEvidence"],
                    description="Risk assessment complete, begin preparation"),
    StateTransition(INTAKE, CLOSURE, conditions=[_equals("caseRejected")],
                    description="Case rejected at intake"),
    StateTransition(PREP, PROCEEDINGS, conditions=[_equals("preparationCompleted")],
                    required_fields=["legalResearch", "documentPreparation", "witnessPreparation"],
                    description="Preparation complete, file proceedings"),
    StateTransition(PREP, CLOSURE, conditions=[_equals("caseSettled")],
                    description="Settled before proceedings"),
    StateTransition(PROCEEDINGS, RESOLUTION, conditions=[_equals("proceedingsCompleted")],
                    description="Proceedings concluded"),
    StateTransition(PROCEEDINGS, CLOSURE, conditions=[_equals("caseDismissed")],
                    description="Case dismissed"),
    StateTransition(RESOLUTION, CLOSURE, conditions=[_equals("resolutionCompleted")],
                    required_fields=["finalJudgment", "settlementAgreement", "appealPeriod"],
                    description="Resolution complete, close and archive"),
]

CASE_TYPE_TRANSITIONS = {
    CaseType.CRIMINAL_DEFENSE: [
        StateTransition(INTAKE, PREP, conditions=[_equals("bailHearingScheduled"), _equals("evidenceSecured")],
                        required_fields=["arrestRecords", "policeReports", "witnessStatements"],
                        description="Bail hearing scheduled and evidence secured"),
    ],
    CaseType.DIVORCE_FAMILY: [
        StateTransition(PREP, PROCEEDINGS, conditions=[_equals("mediationAttempted"), _exists("custodyAgreement")],
                        required_fields=["marriageCertificate", "financialDisclosures", "childCustodyPlan"],
                        description="Mediation attempted, custody agreement drafted"),
    ],
    CaseType.MEDICAL_MALPRACTICE: [
        StateTransition(INTAKE, PREP, conditions=[_equals("medicalRecordsReviewed"),
                                          _equals("expertConsultationCompleted")],
                        required_fields=["medicalRecords", "expertReports", "hospitalDocumentation"],
                        description="Medical records reviewed by an expert"),
    ],
    CaseType.CONTRACT_DISPUTE: [
        StateTransition(PREP, PROCEEDINGS, conditions=[_equals("contractAnalyzed"), _equals("breachDocumented")],
                        required_fields=["contractDocument", "breachEvidence", "correspondence"],
                        description="Contract analysed and breach documented"),
    ],
    CaseType.LABOR_DISPUTE: [
        StateTransition(PREP, PROCEEDINGS, conditions=[_equals("laborBoardNotified"),
                                          _equals("employmentHistoryVerified")],
                        required_fields=["employmentContract", "payrollRecords", "grievanceDocumentation"],
                        description="Labor arbitration board notified"),
    ],
    CaseType.INHERITANCE_DISPUTE: [
        StateTransition(INTAKE, PREP, conditions=[_exists("willLocated"), _equals("heirsIdentified")],
                        required_fields=["deathCertificate", "willDocument", "probateCourtFiling"],
                        description="Will located and heirs identified"),
    ],
    CaseType.ADMINISTRATIVE_CASE: [
        StateTransition(PROCEEDINGS, RESOLUTION, conditions=[_equals("administrativeHearingCompleted"),
                                          _equals("evidenceSubmitted")],
                        required_fields=["agencyDecision", "appealDocumentation", "complianceReport"],
                        description="Administrative hearing completed"),
    ],
    CaseType.DEMOLITION_CASE: [
        StateTransition(PREP, PROCEEDINGS, conditions=[_equals("propertyInspectionCompleted"), _equals("noticesServed")],
                        required_fields=["propertySurvey", "demolitionPermit", "environmentalAssessment"],
                        description="Property inspected and notices served"),
    ],
    CaseType.SPECIAL_MATTER: [
        StateTransition(INTAKE, PREP, conditions=[_equals("specializedAssessmentCompleted"),
                                          _equals("expertConsultationScheduled")],
                        required_fields=["caseAssessment", "expertReferral", "specializedDocumentation"],
                        description="Specialised assessment completed"),
    ],
}


def evaluate_condition(condition: TransitionCondition, details: Dict[str, Any]) -> bool:
    value = details.get(condition.field)
    if condition.operator == "equals":
        return value == condition.value
    if condition.operator == "not_equals":
        return value != condition.value
    if condition.operator == "contains":
        return isinstance(value, (list, tuple, str)) and condition.value in value
    if condition.operator == "exists":
        return value is not None
    if condition.operator == "not_exists":
        return value is None
    logger.warning(f"Unknown transition condition operator: {condition.operator}")
    return False


class CaseStateMachine:
    def __init__(self, base_transitions=None, case_type_transitions=None):
        self.base_transitions = list(base_transitions if base_transitions is not None else BASE_TRANSITIONS)
        self.case_type_transitions = dict(
            case_type_transitions if case_type_transitions is not None else CASE_TYPE_TRANSITIONS
        )

    def transitions_for(self, phase: str, case_type: Optional[str] = None) -> List[StateTransition]:
        """Outgoing transitions of a phase, with case-type overrides applied."""
        merged: Dict[CasePhase, StateTransition] = {}
        for transition in self.base_transitions:
            if transition.from_phase.value == phase:
                merged[transition.to_phase] = transition

        if case_type:
            for transition in self.case_type_transitions.get(CaseType(case_type), []):
                if transition.from_phase.value == phase:
                    merged[transition.to_phase] = transition

        return list(merged.values())

    def can_transition(self, state: CaseState, target_phase: str, user_role: str,
                       details: Optional[Dict[str, Any]] = None) -> TransitionResult:
        details = details if details is not None else (state.details or {})
        known_phases = {phase.value for phase in CasePhase}

        if state.phase not in known_phases:
            return TransitionResult(False, f"Invalid current phase: {state.phase}",
                                    [f"Invalid current phase: {state.phase}"])

        transition = next(
            (t for t in self.transitions_for(state.phase, state.case_type) if t.to_phase.value == target_phase),
            None
        )
        if transition is None:
            return TransitionResult(False, f"Cannot transition from {state.phase} to {target_phase}",
                                    [f"Invalid transition from {state.phase} to {target_phase}"])

        if user_role not in {role.value for role in transition.allowed_roles}:
            return TransitionResult(False, f"User role {user_role} is not authorized for this transition",
                                    ["Insufficient permissions for transition"])

        missing = [name for name in transition.required_fields if details.get(name) is None]
        if missing:
            message = f"Missing required fields: {', '.join(missing)}"
            return TransitionResult(False, message, [message])

        failed = [c for c in transition.conditions if not evaluate_condition(c, details)]
        if failed:
            return TransitionResult(False, "Transition conditions not met",
                                    [f"Condition failed: {c.describe()}" for c in failed])

        return TransitionResult(True, f"Transition from {state.phase} to {target_phase} is allowed")

    def available_transitions(self, state: CaseState, user_role: str) -> List[StateTransition]:
        return [
            t for t in self.transitions_for(state.phase, state.case_type)
            if user_role in {role.value for role in t.allowed_roles}
        ]

    def phase_requirements(self, phase: str, case_type: Optional[str] = None) -> List[str]:
        requirements: List[str] = []
        for transition in self.transitions_for(phase, case_type):
            for name in transition.required_fields:
                if name not in requirements:
                    requirements.append(name)
        return requirements

    def all_transitions(self) -> List[Dict[str, Any]]:
        result = [dict(t.as_dict(), case_type=None) for t in self.base_transitions]
        for case_type, transitions in self.case_type_transitions.items():
            result.extend(dict(t.as_dict(), case_type=case_type.value) for t in transitions)
        return result

    @staticmethod
    def is_locked(status: str) -> bool:
        """Cases in these statuses accept no phase transition."""
        return status in (CaseStatus.CANCELLED.value, CaseStatus.COMPLETED.value, CaseStatus.ON_HOLD.value)


case_state_machine = CaseStateMachine()
