from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from ..database import get_db
from ..auth import get_current_user, get_current_admin_user
from ..exceptions import PracticeError
from ..models.database import User
from ..models.enums import NotificationType
from ..models.schemas import (
    NotificationResponse, NotificationPreferenceUpdate, NotificationPreferenceResponse,
    NotificationStats, SystemNotification
)
from ..services.notification_service import notification_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])

@router.get("", response_model=List[NotificationResponse])
def list_notifications(
    unread_only: bool = False,
    notification_type: Optional[NotificationType] = None,
    skip: int = 0,
    limit: int = 50,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return notification_service.list_notifications(
        db, current_user, unread_only=unread_only, notification_type=notification_type, skip=skip, limit=limit
    )

@router.get("/unread-count")
def unread_count(
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return {"unread": notification_service.unread_count(db, current_user)}

@router.get("/stats", response_model=NotificationStats)
def notification_stats(
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return notification_service.stats(db, current_user)

@router.post("/read-all")
def mark_all_read(
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return {"updated": notification_service.mark_all_read(db, current_user)}

@router.get("/preferences", response_model=NotificationPreferenceResponse)
def get_preferences(
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    preferences = notification_service.get_preferences(db, current_user.id)
    db.commit()
    return preferences

@router.put("/preferences", response_model=NotificationPreferenceResponse)
def update_preferences(
    updates: NotificationPreferenceUpdate,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return notification_service.update_preferences(db, current_user.id, updates.model_dump(exclude_unset=True))

@router.post("/digest")
def send_digest(
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Mail the queued notifications now."""
    return notification_service.send_digest(db, current_user)

@router.post("/system", response_model=List[NotificationResponse])
def broadcast_system_notification(
    notice: SystemNotification,
    current_user = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    """Send a SYSTEM notification to users of the firm (admin only)."""
    try:
        query = db.query(User).filter(User.firm_id == current_user.firm_id, User.is_active.is_(True))
        if notice.user_ids:
            query = query.filter(User.id.in_(notice.user_ids))

        created = notification_service.notify_many(
            db, query.all(), NotificationType.SYSTEM, notice.title, notice.message, priority=notice.priority,
            data={"sent_by": current_user.id}
        )
        db.commit()
        for notification in created:
            db.refresh(notification)
        logger.info(f"System notification sent to {len(created)} users by {current_user.username}")
        return created

    except (HTTPException, PracticeError):
        raise
    except Exception as e:
        logger.error(f"Error sending system notification: {str(e)}")
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to send notification"
        )

@router.post("/cleanup")
def cleanup_notifications(
    retention_days: Optional[int] = None,
    current_user = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    return {"deleted": notification_service.cleanup(db, firm_id=current_user.firm_id, retention_days=retention_days)}

@router.post("/{notification_id}/read", response_model=NotificationResponse)
def mark_read(
    notification_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return notification_service.mark_read(db, current_user, notification_id)

@router.delete("/{notification_id}")
def delete_notification(
    notification_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    notification_service.delete_notification(db, current_user, notification_id)
    return {"message": "Notification deleted successfully"}
