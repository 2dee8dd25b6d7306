from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional, Dict, Any
import logging

from ..database import get_db
from ..auth import get_current_user
from ..exceptions import PracticeError
from ..models.enums import CasePhase, CaseStatus, CaseType
from ..models.schemas import (
    CaseCreate, CaseUpdate, CaseResponse, CaseCreateResponse, CaseStatusChange,
    PhaseTransitionRequest, PhaseTransitionResponse, TransitionOption, PhaseHistoryResponse,
    TeamMemberCreate, TeamMemberResponse, PhaseChecklist
)
from ..services.case_service import case_service
from ..services.case_state_machine import case_state_machine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cases", tags=["Cases"])

@router.post("", response_model=CaseCreateResponse, status_code=status.HTTP_201_CREATED)
def create_case(
    case_data: CaseCreate,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Open a new case in the intake phase."""
    try:
        case, warnings = case_service.create_case(db, current_user, case_data.model_dump())
        return {"case": case, "warnings": warnings}
    except (HTTPException, PracticeError):
        raise
    except Exception as e:
        logger.error(f"Error creating case: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create case"
        )

@router.get("", response_model=List[CaseResponse])
def list_cases(
    status_filter: Optional[CaseStatus] = Query(None, alias="status"),
    phase: Optional[CasePhase] = None,
    case_type: Optional[CaseType] = None,
    client_id: Optional[int] = None,
    lead_lawyer_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return case_service.list_cases(
        db, current_user.firm_id, status=status_filter, phase=phase, case_type=case_type,
        client_id=client_id, lead_lawyer_id=lead_lawyer_id, skip=skip, limit=limit
    )

@router.get("/transitions", response_model=List[Dict[str, Any]])
def list_all_transitions(
    current_user = Depends(get_current_user)
):
    """Every configured phase transition, including case-type overrides."""
    return case_state_machine.all_transitions()

@router.get("/{case_id}", response_model=CaseResponse)
def get_case(
    case_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return case_service.get_case(db, current_user.firm_id, case_id)

@router.put("/{case_id}", response_model=CaseResponse)
def update_case(
    case_id: int,
    case_data: CaseUpdate,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return case_service.update_case(db, current_user.firm_id, case_id, case_data.model_dump(exclude_unset=True))

@router.post("/{case_id}/status", response_model=CaseResponse)
def change_case_status(
    case_id: int,
    status_change: CaseStatusChange,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return case_service.change_status(db, current_user, case_id, status_change.status, status_change.reason)

@router.post("/{case_id}/transition", response_model=PhaseTransitionResponse)
def transition_case_phase(
    case_id: int,
    transition: PhaseTransitionRequest,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Move a case to another phase."""
    try:
        return case_service.transition_phase(
            db, current_user, case_id, transition.target_phase,
            reason=transition.reason, details=transition.details
        )
    except (HTTPException, PracticeError):
        raise
    except Exception as e:
        logger.error(f"Error transitioning case {case_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Phase transition failed"
        )

@router.get("/{case_id}/transitions", response_model=List[TransitionOption])
def available_transitions(
    case_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return case_service.available_transitions(db, current_user, case_id)

@router.get("/{case_id}/history", response_model=List[PhaseHistoryResponse])
def phase_history(
    case_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return case_service.phase_history(db, current_user.firm_id, case_id)

@router.get("/{case_id}/checklist", response_model=PhaseChecklist)
def phase_checklist(
    case_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return case_service.checklist(db, current_user.firm_id, case_id)

@router.get("/{case_id}/team", response_model=List[TeamMemberResponse])
def list_team(
    case_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return case_service.list_team(db, current_user.firm_id, case_id)

@router.post("/{case_id}/team", response_model=TeamMemberResponse, status_code=status.HTTP_201_CREATED)
def add_team_member(
    case_id: int,
    member: TeamMemberCreate,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return case_service.add_team_member(db, current_user.firm_id, case_id, member.user_id, member.role)

@router.delete("/{case_id}/team/{user_id}")
def remove_team_member(
    case_id: int,
    user_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    case_service.remove_team_member(db, current_user.firm_id, case_id, user_id)
    return {"message": "Team member removed"}
