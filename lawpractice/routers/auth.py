from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
from typing import List
import logging

from ..database import get_db
from ..exceptions import PracticeError
from ..auth import (
    auth_rate_limiter, authenticate_user, create_user_token, get_current_user, get_current_admin_user,
    registration_rate_limiter
)
from ..models.schemas import (
    FirmRegister, RegistrationResponse, UserCreate, UserLogin, Token, UserResponse, PasswordChange
)
from ..services.tenancy_service import tenancy_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"

def _too_many(what: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=f"Too many {what} attempts. Please try again later."
    )

@router.post("/register-firm", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def register_firm(
    registration: FirmRegister,
    request: Request,
    db: Session = Depends(get_db)
):
    """Open a new firm and sign in its first administrator."""
    if not registration_rate_limiter.hit(_client_host(request)):
        raise _too_many("registration")

    try:
        firm, admin = tenancy_service.register_firm(db, **registration.model_dump())
    except PracticeError:
        raise
    except Exception as e:
        logger.error(f"Registration of firm {registration.firm_name} failed: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Registration failed"
        )
    return {"firm": firm, "user": admin, "access_token": create_user_token(admin), "token_type": "bearer"}

@router.post("/login", response_model=Token)
async def login_user(
    user_credentials: UserLogin,
    request: Request,
    db: Session = Depends(get_db)
):
    throttle_key = f"{_client_host(request)}:{user_credentials.username.lower()}"
    if not auth_rate_limiter.is_allowed(throttle_key):
        raise _too_many("login")

    user = authenticate_user(db, user_credentials.username, user_credentials.password)
    if user is None:
        auth_rate_limiter.record(throttle_key)
        logger.info(f"Failed login for {user_credentials.username} from {_client_host(request)}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    auth_rate_limiter.reset(throttle_key)
    logger.info(f"User {user.username} of firm {user.firm_id} logged in")
    return {"access_token": create_user_token(user), "token_type": "bearer"}

@router.get("/me", response_model=UserResponse)
async def get_current_user_info(current_user = Depends(get_current_user)):
    return current_user

@router.post("/change-password")
async def change_password(
    passwords: PasswordChange,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    tenancy_service.change_password(db, current_user, passwords.current_password, passwords.new_password)
    return {"message": "Password updated successfully"}

@router.post("/refresh-token", response_model=Token)
async def refresh_token(current_user = Depends(get_current_user)):
    """Issue a fresh token for a still-valid session."""
    return {"access_token": create_user_token(current_user), "token_type": "bearer"}

@router.post("/validate-token")
async def validate_token(current_user = Depends(get_current_user)):
    return {"valid": True, "user": UserResponse.model_validate(current_user)}

@router.get("/users", response_model=List[UserResponse])
async def list_users(
    skip: int = 0,
    limit: int = 100,
    current_user = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    """Members of the caller's firm."""
    return tenancy_service.list_users(db, current_user.firm_id, skip=skip, limit=limit)

@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_firm_user(
    user_data: UserCreate,
    current_user = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    try:
        user = tenancy_service.create_user(db, firm_id=current_user.firm_id, **user_data.model_dump())
    except PracticeError:
        raise
    except Exception as e:
        logger.error(f"Error creating user {user_data.username}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="User creation failed"
        )
    logger.info(f"Admin {current_user.username} added {user.role} {user.username}")
    return user

@router.post("/users/{user_id}/deactivate", response_model=UserResponse)
async def deactivate_user_account(
    user_id: int,
    current_user = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    return tenancy_service.set_active(db, current_user, user_id, False)

@router.post("/users/{user_id}/activate", response_model=UserResponse)
async def activate_user_account(
    user_id: int,
    current_user = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    return tenancy_service.set_active(db, current_user, user_id, True)
