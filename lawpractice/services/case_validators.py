import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..models.enums import CasePhase, CaseStatus, CaseType, FeeType

logger = logging.getLogger(__name__)

INTAKE = CasePhase.INTAKE_RISK_ASSESSMENT.value
PREP = CasePhase.PRE_PROCEEDING_PREP.value
PROCEEDINGS = CasePhase.FORMAL_PROCEEDINGS.value
RESOLUTION = CasePhase.RESOLUTION_POST.value
CLOSURE = CasePhase.CLOSURE_REVIEW.value


def _present(details: Dict[str, Any], name: str) -> bool:
    value = details.get(name)
    return value is not None and value != "" and value != []


class PhaseValidator:
    """Per-phase checklist of the detail fields a case is expected to carry."""

    PHASE_FIELDS = {
        INTAKE: ["clientInformation", "caseDescription", "initialContactDate"],
        PREP: ["legalResearchCompleted", "documentPreparationStarted", "strategyDefined"],
        PROCEEDINGS: ["courtDocumentsFiled", "hearingScheduled", "evidenceSubmitted"],
        RESOLUTION: ["judgmentReceived", "resolutionDocumented", "appealPeriodStarted"],
        CLOSURE: ["finalDocumentation", "clientNotified", "feesSettled"],
    }

    CONDITIONAL_FIELDS = {
        INTAKE: {
            CaseType.CRIMINAL_DEFENSE.value: ["arrestDate", "charges", "policeReportNumber"],
            CaseType.MEDICAL_MALPRACTICE.value: ["incidentDate", "healthcareProvider", "injuryDescription"],
            CaseType.DIVORCE_FAMILY.value: ["marriageDate", "spouseInformation", "childrenInformation"],
        },
        PREP: {
            CaseType.CRIMINAL_DEFENSE.value: ["bailHearingScheduled", "evidenceSecured", "witnessList"],
            CaseType.MEDICAL_MALPRACTICE.value: ["expertConsultationCompleted", "medicalRecordsReviewed",
                                                 "violationAnalysis"],
            CaseType.CONTRACT_DISPUTE.value: ["contractAnalyzed", "breachIdentified", "damagesCalculated"],
        },
        PROCEEDINGS: {
            CaseType.CRIMINAL_DEFENSE.value: ["arraignmentCompleted", "pleaEntered", "trialDateSet"],
            CaseType.DIVORCE_FAMILY.value: ["mediationCompleted", "custodyAgreement", "assetDivision"],
            CaseType.ADMINISTRATIVE_CASE.value: ["administrativeHearingScheduled", "evidencePackageSubmitted"],
        },
        RESOLUTION: {
            CaseType.CRIMINAL_DEFENSE.value: ["sentencingCompleted", "appealConsidered", "probationTerms"],
            CaseType.CONTRACT_DISPUTE.value: ["judgmentEnforced", "settlementReceived", "damagesCollected"],
            CaseType.INHERITANCE_DISPUTE.value: ["willProbated", "assetsDistributed", "taxesPaid"],
        },
        CLOSURE: {
            CaseType.CRIMINAL_DEFENSE.value: ["recordExpunged", "probationCompleted", "restrictionsLifted"],
            CaseType.DIVORCE_FAMILY.value: ["childSupportArranged", "visitationSchedule", "nameChangeProcessed"],
            CaseType.MEDICAL_MALPRACTICE.value: ["medicalBillsPaid", "insuranceClaimsSettled", "followUpCare"],
        },
    }

    STATUS_TRANSITIONS = {
        CaseStatus.DRAFT.value: [CaseStatus.ACTIVE.value, CaseStatus.CANCELLED.value],
        CaseStatus.ACTIVE.value: [CaseStatus.ON_HOLD.value, CaseStatus.COMPLETED.value, CaseStatus.CANCELLED.value],
        CaseStatus.ON_HOLD.value: [CaseStatus.ACTIVE.value, CaseStatus.CANCELLED.value],
        CaseStatus.COMPLETED.value: [],
        CaseStatus.CANCELLED.value: [],
    }

    def expected_fields(self, phase: str, case_type: Optional[str] = None) -> List[str]:
        fields = list(self.PHASE_FIELDS.get(phase, []))
        if case_type:
            fields.extend(self.CONDITIONAL_FIELDS.get(phase, {}).get(case_type, []))
        return fields

    def checklist(self, phase: str, case_type: str, details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        details = details or {}
        expected = self.expected_fields(phase, case_type)
        present = [name for name in expected if _present(details, name)]
        missing = [name for name in expected if name not in present]
        completion = round(len(present) / len(expected), 2) if expected else 1.0
        return {"phase": phase, "present": present, "missing": missing, "completion": completion}

    def can_change_status(self, current: str, target: str) -> bool:
        return target in self.STATUS_TRANSITIONS.get(current, [])


@dataclass
class DocumentRequirement:
    category: str
    phase: str
    description: str
    required: bool = True


@dataclass
class CaseTypeRule:
    required_fields: List[str]
    document_requirements: List[DocumentRequirement]
    max_days: Dict[str, int]
    fee_structures: List[str]
    prohibited_fields: List[str] = field(default_factory=list)


def _docs(*entries: Tuple) -> List[DocumentRequirement]:
    return [DocumentRequirement(*entry) for entry in entries]


HOURLY = FeeType.HOURLY.value
CONTINGENCY = FeeType.CONTINGENCY.value
FLAT = FeeType.FLAT.value
RETAINER = FeeType.RETAINER.value

CASE_TYPE_RULES = {
    CaseType.LABOR_DISPUTE.value: CaseTypeRule(
        required_fields=["employerInformation", "employeeInformation", "employmentContract",
                         "disputeDetails", "employmentDates"],
        prohibited_fields=["criminalRecord", "medicalHistory"],
        document_requirements=_docs(
            ("EmploymentContract", INTAKE, "Original employment contract"),
            ("PayStubs", INTAKE, "Recent pay statements"),
            ("TerminationLetter", INTAKE, "Notice of termination"),
            ("LaborComplaint", PREP, "Filed labor complaint"),
        ),
        max_days={INTAKE: 30, PREP: 60},
        fee_structures=[CONTINGENCY, HOURLY],
    ),
    CaseType.MEDICAL_MALPRACTICE.value: CaseTypeRule(
        required_fields=["patientInformation", "healthcareProvider", "incidentDate",
                         "injuryDescription", "medicalRecords"],
        document_requirements=_docs(
            ("MedicalRecords", INTAKE, "Complete medical history"),
            ("IncidentReport", INTAKE, "Medical incident report"),
            ("ConsentForms", INTAKE, "Patient consent forms"),
            ("ExpertReport", PREP, "Medical expert analysis"),
        ),
        max_days={INTAKE: 90, PREP: 180},
        fee_structures=[CONTINGENCY],
    ),
    CaseType.CRIMINAL_DEFENSE.value: CaseTypeRule(
        required_fields=["defendantInformation", "charges", "arrestDate", "courtInformation", "policeReports"],
        prohibited_fields=["plaintiffDemands", "settlementAmount"],
        document_requirements=_docs(
            ("ArrestRecords", INTAKE, "Arrest and booking records"),
            ("PoliceReports", INTAKE, "Official police reports"),
            ("ChargingDocuments", INTAKE, "Formal charges"),
            ("BailDocuments", PREP, "Bail and bond documents"),
        ),
        max_days={INTAKE: 14, PREP: 90},
        fee_structures=[FLAT, HOURLY, RETAINER],
    ),
    CaseType.DIVORCE_FAMILY.value: CaseTypeRule(
        required_fields=["marriageInformation", "spouseInformation", "childrenInformation",
                         "assetInformation", "incomeInformation"],
        document_requirements=_docs(
            ("MarriageCertificate", INTAKE, "Official marriage certificate"),
            ("BirthCertificates", INTAKE, "Children's birth certificates"),
            ("FinancialStatements", PREP, "Financial disclosure statements"),
            ("PropertyDeeds", PREP, "Real property documentation"),
        ),
        max_days={INTAKE: 30, PREP: 120},
        fee_structures=[FLAT, HOURLY, RETAINER],
    ),
    CaseType.INHERITANCE_DISPUTE.value: CaseTypeRule(
        required_fields=["deceasedInformation", "willInformation", "beneficiaryInformation",
                         "assetInventory", "executorInformation"],
        document_requirements=_docs(
            ("DeathCertificate", INTAKE, "Official death certificate"),
            ("WillDocument", INTAKE, "Last will and testament"),
            ("AssetInventory", PREP, "Complete asset inventory"),
            ("ProbateDocuments", PREP, "Probate court filings"),
        ),
        max_days={INTAKE: 60, PREP: 365},
        fee_structures=[HOURLY, FLAT],
    ),
    CaseType.CONTRACT_DISPUTE.value: CaseTypeRule(
        required_fields=["contractInformation", "partiesInvolved", "breachDetails",
                         "damagesClaimed", "contractValue"],
        document_requirements=_docs(
            ("ContractDocument", INTAKE, "Signed contract agreement"),
            ("BreachEvidence", INTAKE, "Evidence of breach"),
            ("Correspondence", INTAKE, "Related correspondence"),
            ("ExpertReport", PREP, "Expert analysis if needed", False),
        ),
        max_days={INTAKE: 45, PREP: 90},
        fee_structures=[HOURLY, CONTINGENCY, FLAT],
    ),
    CaseType.ADMINISTRATIVE_CASE.value: CaseTypeRule(
        required_fields=["agencyInformation", "agencyCaseNumber", "violationDetails",
                         "hearingInformation", "regulatoryCitations"],
        document_requirements=_docs(
            ("AgencyNotice", INTAKE, "Official agency notice"),
            ("ViolationReport", INTAKE, "Violation details report"),
            ("Regulations", PREP, "Applicable regulations"),
            ("HearingNotice", PREP, "Hearing notice"),
        ),
        max_days={INTAKE: 30, PREP: 60},
        fee_structures=[HOURLY, FLAT],
    ),
    CaseType.DEMOLITION_CASE.value: CaseTypeRule(
        required_fields=["propertyInformation", "demolitionOrder", "ownerInformation",
                         "contractorInformation", "safetyPlan"],
        document_requirements=_docs(
            ("DemolitionPermit", INTAKE, "Official demolition permit"),
            ("PropertySurvey", INTAKE, "Property site survey"),
            ("SafetyPlan", PREP, "Demolition safety plan"),
            ("ContractorLicense", PREP, "Contractor license documentation"),
        ),
        max_days={INTAKE: 45, PREP: 30},
        fee_structures=[FLAT, HOURLY],
    ),
    CaseType.SPECIAL_MATTER.value: CaseTypeRule(
        required_fields=["matterDescription", "partiesInvolved", "jurisdiction", "legalBasis", "reliefSought"],
        document_requirements=_docs(
            ("LegalMemorandum", INTAKE, "Legal research memorandum"),
            ("JurisdictionAnalysis", INTAKE, "Jurisdiction analysis"),
            ("ExpertReport", PREP, "Expert consultation if needed", False),
            ("StrategyDocument", PREP, "Case strategy document"),
        ),
        max_days={INTAKE: 60, PREP: 90},
        fee_structures=[HOURLY, CONTINGENCY, FLAT, RETAINER],
    ),
}


class CaseTypeValidator:
    """Case-type specific intake fields, documents, timelines and fee structures."""

    def __init__(self, rules: Optional[Dict[str, CaseTypeRule]] = None):
        self.rules = rules if rules is not None else CASE_TYPE_RULES

    def rule_for(self, case_type: str) -> Optional[CaseTypeRule]:
        return self.rules.get(case_type)

    def validate_creation(self, case_type: str, details: Optional[Dict[str, Any]]) -> Tuple[List[str], List[str]]:
        """Returns ``(errors, warnings)`` for a new case's details."""
        details = details or {}
        rule = self.rule_for(case_type)
        if rule is None:
            return [], []

        errors: List[str] = []
        warnings: List[str] = []

        prohibited = [name for name in rule.prohibited_fields if _present(details, name)]
        if prohibited:
            errors.append(f"Prohibited fields present for {case_type} case: {', '.join(prohibited)}")

        missing = [name for name in rule.required_fields if not _present(details, name)]
        if missing:
            warnings.append(f"Missing intake fields for {case_type}: {', '.join(missing)}")

        return errors, warnings

    def document_requirements(self, case_type: str, phase: str) -> List[DocumentRequirement]:
        rule = self.rule_for(case_type)
        if rule is None:
            return []
        return [req for req in rule.document_requirements if req.phase == phase]

    def document_warnings(self, case_type: str, phase: str, categories: List[str]) -> List[str]:
        available = {c.lower() for c in categories if c}
        return [
            f"Missing required document for {phase}: {req.category} ({req.description})"
            for req in self.document_requirements(case_type, phase)
            if req.required and req.category.lower() not in available
        ]

    def timeline_warnings(self, case_type: str, phase: str, phase_started: Optional[datetime],
                          now: datetime) -> List[str]:
        rule = self.rule_for(case_type)
        if rule is None or phase_started is None:
            return []
        max_days = rule.max_days.get(phase)
        if max_days is None:
            return []
        elapsed = (now - phase_started).days
        if elapsed > max_days:
            return [f"Phase {phase} has run {elapsed} days, exceeding the {max_days}-day limit for {case_type}"]
        return []

    def fee_structures(self, case_type: str) -> List[str]:
        rule = self.rule_for(case_type)
        return list(rule.fee_structures) if rule else [fee.value for fee in FeeType]

    def supports_fee(self, case_type: str, fee_type: str) -> bool:
        return fee_type in self.fee_structures(case_type)


phase_validator = PhaseValidator()
case_type_validator = CaseTypeValidator()
