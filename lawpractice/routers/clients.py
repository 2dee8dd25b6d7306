from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from ..database import get_db
from ..auth import get_current_user
from ..exceptions import PracticeError
from ..models.schemas import ClientCreate, ClientUpdate, ClientResponse
from ..services.client_service import client_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/clients", tags=["Clients"])

@router.post("", response_model=ClientResponse, status_code=status.HTTP_201_CREATED)
async def create_client(
    client_data: ClientCreate,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a client in the user's firm."""
    try:
        return client_service.create_client(db, current_user.firm_id, client_data.model_dump())
    except (HTTPException, PracticeError):
        raise
    except Exception as e:
        logger.error(f"Error creating client: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create client"
        )

@router.get("", response_model=List[ClientResponse])
async def list_clients(
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return client_service.list_clients(db, current_user.firm_id, search=search, skip=skip, limit=limit)

@router.get("/{client_id}", response_model=ClientResponse)
async def get_client(
    client_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return client_service.get_client(db, current_user.firm_id, client_id)

@router.put("/{client_id}", response_model=ClientResponse)
async def update_client(
    client_id: int,
    client_data: ClientUpdate,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return client_service.update_client(
        db, current_user.firm_id, client_id, client_data.model_dump(exclude_unset=True)
    )

@router.delete("/{client_id}")
async def delete_client(
    client_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a client that has no cases."""
    client_service.delete_client(db, current_user.firm_id, client_id)
    return {"message": "Client deleted successfully"}
