from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Deque, Dict, Optional
import logging
import time

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .models.database import User
from .models.enums import UserRole

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# auto_error is off so a missing header is reported as 401 like a bad token
security = HTTPBearer(auto_error=False)

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

def create_access_token(claims: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign ``claims`` as a JWT with issue and expiry times."""
    issued = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)

    payload = dict(claims)
    payload["iat"] = issued
    payload["exp"] = issued + lifetime
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)

def create_user_token(user: User) -> str:
    """Token identifying the user by id and pinning it to the user's firm."""
    return create_access_token({"sub": str(user.id), "firm": user.firm_id, "role": user.role})

def verify_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        logger.warning(f"Token verification failed: {str(e)}")
        return None

def authenticate_user(db: Session, username: str, password: str) -> Optional[User]:
    """Return the active user matching the credentials, or None."""
    user = db.query(User).filter(User.username == username).first()
    if user is None or not user.is_active:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user

def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Resolve the bearer token to an active user of the firm named in it."""
    if credentials is None:
        raise _unauthorized("Not authenticated")

    payload = verify_token(credentials.credentials)
    if payload is None:
        raise _unauthorized()

    try:
        user_id = int(payload["sub"])
        firm_id = payload["firm"]
    except (KeyError, TypeError, ValueError):
        raise _unauthorized()

    user = db.get(User, user_id)
    if user is None or user.firm_id != firm_id:
        raise _unauthorized()
    if not user.is_active:
        raise _unauthorized("Inactive user")

    return user

async def get_current_admin_user(
    current_user: User = Depends(get_current_user)
) -> User:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions"
        )
    return current_user

def require_roles(*roles: UserRole):
    """Dependency factory letting only the given roles through."""
    allowed = {role.value for role in roles}

    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of: {', '.join(sorted(allowed))}"
            )
        return current_user

    return checker

class RateLimiter:
    """Sliding-window counter of events per key.

    Login only records failures, so a correct password never locks a user
    out; registration records every attempt.
    """

    def __init__(self, max_attempts: int = 5, window_seconds: int = 300):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._events: Dict[str, Deque[float]] = defaultdict(deque)

    def _prune(self, key: str, now: float) -> Deque[float]:
        events = self._events[key]
        while events and now - events[0] >= self.window_seconds:
            events.popleft()
        return events

    def is_allowed(self, key: str) -> bool:
        return len(self._prune(key, time.monotonic())) < self.max_attempts

    def record(self, key: str):
        now = time.monotonic()
        self._prune(key, now).append(now)
        if len(self._events[key]) >= self.max_attempts:
            logger.warning(f"Rate limit reached for {key}")

    def hit(self, key: str) -> bool:
        """Record an attempt and report whether it was within the limit."""
        if not self.is_allowed(key):
            return False
        self.record(key)
        return True

    def reset(self, key: str):
        self._events.pop(key, None)

    def clear(self):
        self._events.clear()

auth_rate_limiter = RateLimiter(
    max_attempts=settings.login_max_attempts,
    window_seconds=settings.login_window_seconds
)

registration_rate_limiter = RateLimiter(
    max_attempts=settings.registration_max_attempts,
    window_seconds=settings.login_window_seconds
)
