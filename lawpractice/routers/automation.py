from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional, Dict, Any
import logging

from ..database import get_db
from ..auth import get_current_user, get_current_admin_user
from ..exceptions import PracticeError
from ..models.schemas import RuleCreate, RuleUpdate, RuleResponse, EvaluateRequest, RuleExecutionResult
from ..services.case_service import case_service
from ..services.rule_engine import rule_engine
from ..services.task_service import task_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/automation", tags=["Automation"])

@router.get("/rules", response_model=List[RuleResponse])
def list_rules(
    trigger_event: Optional[str] = None,
    active_only: bool = False,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return rule_engine.list_rules(db, current_user.firm_id, trigger_event=trigger_event, active_only=active_only)

@router.post("/rules", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
def create_rule(
    rule: RuleCreate,
    current_user = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    return rule_engine.create_rule(db, current_user.firm_id, rule.model_dump())

@router.get("/rules/{rule_id}", response_model=RuleResponse)
def get_rule(
    rule_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return rule_engine.get_rule(db, current_user.firm_id, rule_id)

@router.put("/rules/{rule_id}", response_model=RuleResponse)
def update_rule(
    rule_id: int,
    rule: RuleUpdate,
    current_user = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    return rule_engine.update_rule(db, current_user.firm_id, rule_id, rule.model_dump(exclude_unset=True))

@router.delete("/rules/{rule_id}")
def delete_rule(
    rule_id: int,
    current_user = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    rule_engine.delete_rule(db, current_user.firm_id, rule_id)
    return {"message": "Rule deleted successfully"}

@router.get("/stats", response_model=Dict[str, Any])
def automation_stats(
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return rule_engine.stats(db, current_user.firm_id)

@router.post("/evaluate", response_model=List[RuleExecutionResult])
def evaluate_event(
    request: EvaluateRequest,
    current_user = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    """Fire an event by hand against the firm's rules."""
    try:
        task = task_service.get_task(db, current_user.firm_id, request.task_id) if request.task_id else None
        case = case_service.get_case(db, current_user.firm_id, request.case_id) if request.case_id else None

        context = rule_engine.build_context(request.event_type, task=task, case=case, user=current_user,
                                            data=request.data)
        results = rule_engine.process_event(db, current_user.firm_id, request.event_type, context)
        db.commit()
        return results

    except (HTTPException, PracticeError):
        raise
    except Exception as e:
        logger.error(f"Error evaluating event {request.event_type}: {str(e)}")
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Rule evaluation failed"
        )
