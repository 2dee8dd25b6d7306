import logging
import re
import smtplib
import ssl
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import NotFoundError, ValidationError
from ..models.database import Notification, NotificationPreference, User
from ..models.enums import EmailFrequency, NotificationPriority, NotificationType, UserRole
from ..utils import utcnow

logger = logging.getLogger(__name__)

QUIET_HOURS_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

# Preference switch guarding each notification type; SYSTEM has none.
TYPE_PREFERENCE_FIELDS = {
    NotificationType.TASK_ASSIGNED.value: "task_assignment",
    NotificationType.TASK_DUE.value: "task_deadline",
    NotificationType.TASK_COMPLETED.value: "task_completion",
    NotificationType.TASK_ESCALATED.value: "task_escalation",
    NotificationType.CASE_UPDATE.value: "case_updates",
    NotificationType.BILLING.value: "billing",
}

IN_APP = "in_app"
EMAIL = "email"


class EmailSender:
    """Sends mail over SMTP. Without an SMTP host, messages are only logged."""

    def __init__(self, host: Optional[str] = None, port: int = 587, user: Optional[str] = None,
                 password: Optional[str] = None, sender: Optional[str] = None, use_tls: bool = True):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user or "noreply@lawpractice.local"
        self.use_tls = use_tls

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def send(self, to_email: str, subject: str, body: str) -> bool:
        if not self.enabled:
            logger.info(f"Email delivery disabled, not sending to {to_email}: {subject}")
            return False

        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as server:
                server.ehlo()
                if self.use_tls:
                    server.starttls(context=ssl.create_default_context())
                    server.ehlo()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(message)
            logger.info(f"Sent email to {to_email}: {subject}")
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send to {to_email} failed: {str(e)}")
            return False


def _parse_hhmm(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def _user_zone(name: Optional[str]):
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}, using UTC")
        return timezone.utc


def is_quiet_hours(prefs: NotificationPreference, now: Optional[datetime] = None) -> bool:
    """True when ``now`` (naive UTC) falls in the user's quiet window.

    The window is read in the user's timezone and may wrap past midnight.
    """
    if not prefs.quiet_hours_start or not prefs.quiet_hours_end:
        return False

    now = now or utcnow()
    local = now.replace(tzinfo=timezone.utc).astimezone(_user_zone(prefs.timezone))
    current = local.hour * 60 + local.minute
    start = _parse_hhmm(prefs.quiet_hours_start)
    end = _parse_hhmm(prefs.quiet_hours_end)

    if start == end:
        return False
    if start < end:
        return start <= current < end
    return current >= start or current < end


def can_deliver(
    prefs: NotificationPreference,
    notification_type: str,
    channel: str = IN_APP,
    priority: str = NotificationPriority.NORMAL.value,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Decide whether a notification may go out on a channel right now.

    Returns ``{"allowed", "queue_for_digest", "quiet_hours_active", "reason"}``.
    """
    check = {"allowed": False, "queue_for_digest": False, "quiet_hours_active": False, "reason": None}

    if channel == EMAIL and not prefs.email_enabled:
        check["reason"] = "Email notifications are disabled"
        return check
    if channel == IN_APP and not prefs.in_app_enabled:
        check["reason"] = "In-app notifications are disabled"
        return check

    field = TYPE_PREFERENCE_FIELDS.get(notification_type)
    if field and not getattr(prefs, field):
        check["reason"] = f"{notification_type} notifications are disabled"
        return check

    quiet = is_quiet_hours(prefs, now)
    check["quiet_hours_active"] = quiet

    if channel == IN_APP:
        if quiet and not (priority == NotificationPriority.URGENT.value
                          or notification_type == NotificationType.TASK_ESCALATED.value):
            check["reason"] = "Quiet hours are active"
            return check
        check["allowed"] = True
        return check

    frequency = prefs.email_frequency or EmailFrequency.IMMEDIATE.value
    if frequency == EmailFrequency.NEVER.value:
        check["reason"] = "Email frequency is set to never"
        return check
    if frequency != EmailFrequency.IMMEDIATE.value:
        check["reason"] = f"Email queued for {frequency.lower()} digest"
        check["queue_for_digest"] = True
        return check
    if quiet:
        check["reason"] = "Quiet hours are active"
        check["queue_for_digest"] = True
        return check

    check["allowed"] = True
    return check


class NotificationService:
    """In-app notifications and e-mail delivery, filtered by user preferences."""

    def __init__(self, email_sender: Optional[EmailSender] = None):
        self.email_sender = email_sender or EmailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            sender=settings.smtp_from,
            use_tls=settings.smtp_use_tls,
        )

    def get_preferences(self, db: Session, user_id: int) -> NotificationPreference:
        prefs = db.query(NotificationPreference).filter(NotificationPreference.user_id == user_id).first()
        if prefs is None:
            prefs = NotificationPreference(
                user_id=user_id,
                email_enabled=True,
                in_app_enabled=True,
                task_assignment=True,
                task_deadline=True,
                task_completion=True,
                task_escalation=True,
                case_updates=True,
                billing=True,
                email_frequency=EmailFrequency.IMMEDIATE.value,
                timezone="Asia/Shanghai",
            )
            db.add(prefs)
            db.flush()
            logger.info(f"Created default notification preferences for user {user_id}")
        return prefs

    def update_preferences(self, db: Session, user_id: int, updates: Dict[str, Any]) -> NotificationPreference:
        for key in ("quiet_hours_start", "quiet_hours_end"):
            value = updates.get(key)
            if value and not QUIET_HOURS_PATTERN.match(value):
                raise ValidationError(f"{key} must use HH:MM format")
        if updates.get("timezone"):
            try:
                ZoneInfo(updates["timezone"])
            except (ZoneInfoNotFoundError, ValueError):
                raise ValidationError(f"Unknown timezone: {updates['timezone']}")

        prefs = self.get_preferences(db, user_id)
        for key, value in updates.items():
            if value is None:
                continue
            if hasattr(value, "value"):
                value = value.value
            setattr(prefs, key, value)

        if bool(prefs.quiet_hours_start) != bool(prefs.quiet_hours_end):
            raise ValidationError("quiet_hours_start and quiet_hours_end must be set together")

        db.commit()
        db.refresh(prefs)
        logger.info(f"Updated notification preferences for user {user_id}")
        return prefs

    def notify(
        self,
        db: Session,
        user: User,
        notification_type: NotificationType,
        title: str,
        message: str,
        priority: NotificationPriority = NotificationPriority.NORMAL,
        data: Optional[Dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Notification]:
        """Create the in-app notification and send or queue the e-mail.

        A queued e-mail whose in-app copy is suppressed is still stored, as a
        hidden row the digest picks up. Returns the visible notification, if any.
        The caller owns the transaction; rows are only flushed.
        """
        prefs = self.get_preferences(db, user.id)
        in_app = can_deliver(prefs, notification_type.value, IN_APP, priority.value, now)
        email = can_deliver(prefs, notification_type.value, EMAIL, priority.value, now)

        if not in_app["allowed"]:
            logger.debug(f"In-app notification for {user.username} suppressed: {in_app['reason']}")

        notification = None
        if in_app["allowed"] or email["queue_for_digest"]:
            notification = Notification(
                firm_id=user.firm_id,
                user_id=user.id,
                notification_type=notification_type.value,
                title=title,
                message=message,
                priority=priority.value,
                data=data or {},
                is_read=False,
                email_pending=email["queue_for_digest"],
                in_app=in_app["allowed"],
                expires_at=expires_at,
            )
            db.add(notification)
            db.flush()
            logger.info(f"Notification {notification_type.value} stored for user {user.username}")

        if email["allowed"] and user.email:
            self.email_sender.send(user.email, title, message)

        if notification is not None and not notification.in_app:
            return None
        return notification

    def notify_many(self, db: Session, users: List[User], notification_type: NotificationType,
                    title: str, message: str, **kwargs) -> List[Notification]:
        seen = set()
        created = []
        for user in users:
            if user is None or user.id in seen or not user.is_active:
                continue
            seen.add(user.id)
            notification = self.notify(db, user, notification_type, title, message, **kwargs)
            if notification is not None:
                created.append(notification)
        return created

    def firm_admins(self, db: Session, firm_id: int) -> List[User]:
        return db.query(User).filter(
            User.firm_id == firm_id,
            User.role == UserRole.ADMIN.value,
            User.is_active.is_(True)
        ).all()

    def list_notifications(
        self,
        db: Session,
        user: User,
        unread_only: bool = False,
        notification_type: Optional[NotificationType] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[Notification]:
        query = db.query(Notification).filter(Notification.user_id == user.id, Notification.in_app.is_(True))
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        if notification_type:
            query = query.filter(Notification.notification_type == notification_type.value)
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(skip).limit(limit).all()

    def unread_count(self, db: Session, user: User) -> int:
        return db.query(Notification).filter(
            Notification.user_id == user.id,
            Notification.in_app.is_(True),
            Notification.is_read.is_(False)
        ).count()

    def stats(self, db: Session, user: User) -> Dict[str, Any]:
        base = db.query(Notification).filter(Notification.user_id == user.id, Notification.in_app.is_(True))
        by_type = dict(
            db.query(Notification.notification_type, func.count(Notification.id))
            .filter(Notification.user_id == user.id, Notification.in_app.is_(True))
            .group_by(Notification.notification_type).all()
        )
        by_priority = dict(
            db.query(Notification.priority, func.count(Notification.id))
            .filter(Notification.user_id == user.id, Notification.in_app.is_(True))
            .group_by(Notification.priority).all()
        )
        return {
            "total": base.count(),
            "unread": self.unread_count(db, user),
            "by_type": by_type,
            "by_priority": by_priority,
        }

    def _get_own(self, db: Session, user: User, notification_id: int) -> Notification:
        notification = db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user.id,
            Notification.in_app.is_(True)
        ).first()
        if notification is None:
            raise NotFoundError("Notification not found")
        return notification

    def mark_read(self, db: Session, user: User, notification_id: int) -> Notification:
        notification = self._get_own(db, user, notification_id)
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utcnow()
            db.commit()
            db.refresh(notification)
        return notification

    def mark_all_read(self, db: Session, user: User) -> int:
        now = utcnow()
        count = db.query(Notification).filter(
            Notification.user_id == user.id,
            Notification.in_app.is_(True),
            Notification.is_read.is_(False)
        ).update({Notification.is_read: True, Notification.read_at: now}, synchronize_session=False)
        db.commit()
        logger.info(f"Marked {count} notifications read for user {user.username}")
        return count

    def delete_notification(self, db: Session, user: User, notification_id: int):
        notification = self._get_own(db, user, notification_id)
        db.delete(notification)
        db.commit()

    def send_digest(self, db: Session, user: User) -> Dict[str, Any]:
        """Mail every queued notification to the user in one message."""
        pending = db.query(Notification).filter(
            Notification.user_id == user.id,
            Notification.email_pending.is_(True)
        ).order_by(Notification.created_at, Notification.id).all()

        if not pending:
            return {"sent": False, "count": 0}

        lines = [f"You have {len(pending)} notifications:", ""]
        for notification in pending:
            lines.append(f"[{notification.priority}] {notification.title}")
            lines.append(f"    {notification.message}")

        sent = self.email_sender.send(user.email, f"Notification digest ({len(pending)})", "\n".join(lines))
        if sent:
            for notification in pending:
                if notification.in_app:
                    notification.email_pending = False
                else:
                    db.delete(notification)
            db.commit()
            logger.info(f"Sent digest of {len(pending)} notifications to {user.username}")
        return {"sent": sent, "count": len(pending)}

    def cleanup(self, db: Session, firm_id: Optional[int] = None, retention_days: Optional[int] = None,
                now: Optional[datetime] = None) -> int:
        """Delete expired notifications and read ones past the retention period."""
        now = now or utcnow()
        retention_days = retention_days if retention_days is not None else settings.notification_retention_days
        cutoff = now - timedelta(days=retention_days)

        base = db.query(Notification)
        if firm_id is not None:
            base = base.filter(Notification.firm_id == firm_id)

        expired = base.filter(
            Notification.expires_at.isnot(None),
            Notification.expires_at < now
        ).delete(synchronize_session=False)
        old_read = base.filter(
            Notification.is_read.is_(True),
            Notification.created_at < cutoff
        ).delete(synchronize_session=False)
        db.commit()

        logger.info(f"Notification cleanup removed {expired} expired and {old_read} old read notifications")
        return expired + old_read


notification_service = NotificationService()
