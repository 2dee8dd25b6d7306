import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ..auth import get_password_hash, verify_password
from ..exceptions import ConflictError, NotFoundError, ValidationError
from ..models.database import Firm, User
from ..models.enums import UserRole
from .rule_engine import rule_engine

logger = logging.getLogger(__name__)


class TenancyService:
    """Firms and their users."""

    def _ensure_unique(self, db: Session, username: str, email: str):
        existing_user = db.query(User).filter(
            (User.username == username) | (User.email == email)
        ).first()
        if existing_user:
            raise ConflictError("User with this username or email already exists")

    def register_firm(
        self,
        db: Session,
        firm_name: str,
        username: str,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
        firm_tax_id: Optional[str] = None,
        firm_address: Optional[str] = None,
    ) -> Tuple[Firm, User]:
        try:
            self._ensure_unique(db, username, email)

            firm = Firm(name=firm_name, tax_id=firm_tax_id, address=firm_address)
            db.add(firm)
            db.flush()

            admin = User(
                firm_id=firm.id,
                username=username,
                email=email,
                first_name=first_name,
                last_name=last_name,
                hashed_password=get_password_hash(password),
                role=UserRole.ADMIN.value,
                is_active=True,
            )
            db.add(admin)
            rule_engine.seed_default_rules(db, firm.id)

            db.commit()
            db.refresh(firm)
            db.refresh(admin)
            logger.info(f"Registered firm '{firm.name}' with admin {admin.username}")
            return firm, admin

        except ConflictError:
            raise
        except Exception as e:
            logger.error(f"Error registering firm {firm_name}: {str(e)}")
            db.rollback()
            raise

    def create_user(
        self,
        db: Session,
        firm_id: int,
        username: str,
        email: str,
        password: str,
        role: UserRole = UserRole.LAWYER,
        first_name: str = "",
        last_name: str = "",
        phone: Optional[str] = None,
    ) -> User:
        try:
            self._ensure_unique(db, username, email)
            user = User(
                firm_id=firm_id,
                username=username,
                email=email,
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                hashed_password=get_password_hash(password),
                role=UserRole(role).value,
                is_active=True,
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            logger.info(f"Created user {username} ({user.role}) in firm {firm_id}")
            return user

        except ConflictError:
            raise
        except Exception as e:
            logger.error(f"Error creating user {username}: {str(e)}")
            db.rollback()
            raise

    def get_firm(self, db: Session, firm_id: int) -> Firm:
        firm = db.query(Firm).filter(Firm.id == firm_id).first()
        if firm is None:
            raise NotFoundError("Firm not found")
        return firm

    def get_user(self, db: Session, firm_id: int, user_id: int) -> User:
        user = db.query(User).filter(User.id == user_id, User.firm_id == firm_id).first()
        if user is None:
            raise NotFoundError("User not found")
        return user

    def list_users(self, db: Session, firm_id: int, skip: int = 0, limit: int = 100) -> List[User]:
        return db.query(User).filter(User.firm_id == firm_id).order_by(User.id).offset(skip).limit(limit).all()

    def set_active(self, db: Session, admin: User, user_id: int, active: bool) -> User:
        if not active and admin.id == user_id:
            raise ValidationError("Cannot deactivate your own account")

        user = self.get_user(db, admin.firm_id, user_id)
        user.is_active = active
        db.commit()
        db.refresh(user)
        logger.info(f"User {user.username} {'activated' if active else 'deactivated'} by {admin.username}")
        return user

    def change_password(self, db: Session, user: User, current_password: str, new_password: str):
        if not verify_password(current_password, user.hashed_password):
            raise ValidationError("Current password is incorrect")
        if len(new_password) < 8:
            raise ValidationError("New password must be at least 8 characters long")

        user.hashed_password = get_password_hash(new_password)
        db.commit()
        logger.info(f"Password changed for user: {user.username}")


tenancy_service = TenancyService()
