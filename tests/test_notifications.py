# tests/test_notifications.py

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from lawpractice.exceptions import NotFoundError, ValidationError
from lawpractice.models.database import Notification, NotificationPreference
from lawpractice.models.enums import NotificationPriority, NotificationType
from lawpractice.services.notification_service import (
    EMAIL, IN_APP, EmailSender, NotificationService, can_deliver, is_quiet_hours
)
from lawpractice.utils import utcnow

# 15:00 UTC is 23:00 in Shanghai
SHANGHAI_NIGHT = datetime(2024, 1, 1, 15, 0)
SHANGHAI_MORNING = datetime(2024, 1, 1, 2, 0)


class RecordingSender(EmailSender):
    def __init__(self):
        super().__init__(host="smtp.test")
        self.sent = []

    def send(self, to_email: str, subject: str, body: str) -> bool:
        self.sent.append((to_email, subject, body))
        return True


def _prefs(**overrides) -> NotificationPreference:
    values = dict(
        email_enabled=True, in_app_enabled=True, task_assignment=True, task_deadline=True,
        task_completion=True, task_escalation=True, case_updates=True, billing=True,
        email_frequency="IMMEDIATE", quiet_hours_start="22:00", quiet_hours_end="07:00",
        timezone="Asia/Shanghai",
    )
    values.update(overrides)
    return NotificationPreference(**values)


def test_quiet_window_wraps_midnight_in_user_timezone() -> None:
    prefs = _prefs()
    assert is_quiet_hours(prefs, SHANGHAI_NIGHT)
    assert is_quiet_hours(prefs, datetime(2024, 1, 1, 22, 30))
    assert not is_quiet_hours(prefs, SHANGHAI_MORNING)

    assert not is_quiet_hours(_prefs(timezone="UTC"), SHANGHAI_NIGHT)
    assert not is_quiet_hours(_prefs(quiet_hours_start=None, quiet_hours_end=None), SHANGHAI_NIGHT)


def test_in_app_during_quiet_hours() -> None:
    prefs = _prefs()
    normal = can_deliver(prefs, NotificationType.CASE_UPDATE.value, IN_APP, now=SHANGHAI_NIGHT)
    assert normal["allowed"] is False
    assert normal["reason"] == "Quiet hours are active"

    urgent = can_deliver(prefs, NotificationType.CASE_UPDATE.value, IN_APP,
                         NotificationPriority.URGENT.value, now=SHANGHAI_NIGHT)
    assert urgent["allowed"] is True

    escalation = can_deliver(prefs, NotificationType.TASK_ESCALATED.value, IN_APP, now=SHANGHAI_NIGHT)
    assert escalation["allowed"] is True


def test_email_frequency_and_quiet_hours() -> None:
    quiet = can_deliver(_prefs(), NotificationType.BILLING.value, EMAIL, now=SHANGHAI_NIGHT)
    assert quiet["allowed"] is False and quiet["queue_for_digest"] is True

    daily = can_deliver(_prefs(email_frequency="DAILY"), NotificationType.BILLING.value, EMAIL,
                        now=SHANGHAI_MORNING)
    assert daily["queue_for_digest"] is True

    never = can_deliver(_prefs(email_frequency="NEVER"), NotificationType.BILLING.value, EMAIL,
                        now=SHANGHAI_MORNING)
    assert never == {"allowed": False, "queue_for_digest": False, "quiet_hours_active": False,
                     "reason": "Email frequency is set to never"}

    assert can_deliver(_prefs(), NotificationType.BILLING.value, EMAIL, now=SHANGHAI_MORNING)["allowed"]


def test_type_switches_gate_delivery() -> None:
    prefs = _prefs(task_assignment=False)
    assert not can_deliver(prefs, NotificationType.TASK_ASSIGNED.value, IN_APP, now=SHANGHAI_MORNING)["allowed"]
    assert can_deliver(prefs, NotificationType.SYSTEM.value, IN_APP, now=SHANGHAI_MORNING)["allowed"]
    assert not can_deliver(_prefs(in_app_enabled=False), NotificationType.SYSTEM.value, IN_APP)["allowed"]


def test_preference_validation(db, lawyer) -> None:
    service = NotificationService(email_sender=RecordingSender())

    with pytest.raises(ValidationError):
        service.update_preferences(db, lawyer.id, {"quiet_hours_start": "7pm"})
    with pytest.raises(ValidationError):
        service.update_preferences(db, lawyer.id, {"timezone": "Mars/Olympus"})
    with pytest.raises(ValidationError):
        service.update_preferences(db, lawyer.id, {"quiet_hours_start": "22:00"})
    db.rollback()

    prefs = service.update_preferences(db, lawyer.id, {"quiet_hours_start": "22:00", "quiet_hours_end": "07:00",
                                                       "timezone": "Europe/Berlin"})
    assert prefs.timezone == "Europe/Berlin"


def test_immediate_email_is_sent(db, lawyer) -> None:
    sender = RecordingSender()
    service = NotificationService(email_sender=sender)

    notification = service.notify(db, lawyer, NotificationType.SYSTEM, "Welcome", "Your account is ready")
    db.commit()

    assert notification.email_pending is False
    assert sender.sent == [("lawyer@lawfirm.cn", "Welcome", "Your account is ready")]


def test_digest_collects_queued_notifications(db, lawyer) -> None:
    sender = RecordingSender()
    service = NotificationService(email_sender=sender)
    service.update_preferences(db, lawyer.id, {"email_frequency": "DAILY"})

    service.notify(db, lawyer, NotificationType.BILLING, "Invoice issued", "INV2024030001 issued")
    service.notify(db, lawyer, NotificationType.CASE_UPDATE, "Hearing moved", "Hearing moved to May 3")
    db.commit()
    assert sender.sent == []

    result = service.send_digest(db, lawyer)

    assert result == {"sent": True, "count": 2}
    assert len(sender.sent) == 1
    assert "Hearing moved to May 3" in sender.sent[0][2]
    assert service.send_digest(db, lawyer) == {"sent": False, "count": 0}


def test_quiet_hours_suppress_in_app(db, lawyer) -> None:
    service = NotificationService(email_sender=RecordingSender())
    service.update_preferences(db, lawyer.id, {"quiet_hours_start": "22:00", "quiet_hours_end": "07:00"})

    suppressed = service.notify(db, lawyer, NotificationType.CASE_UPDATE, "Late update", "...",
                                now=SHANGHAI_NIGHT)
    urgent = service.notify(db, lawyer, NotificationType.CASE_UPDATE, "Court order", "...",
                            priority=NotificationPriority.URGENT, now=SHANGHAI_NIGHT)
    db.commit()

    assert suppressed is None
    assert urgent is not None and urgent.email_pending is True


def test_read_state_and_ownership(db, lawyer, admin) -> None:
    service = NotificationService(email_sender=RecordingSender())
    created = service.notify_many(db, [lawyer, lawyer, admin], NotificationType.SYSTEM, "Notice", "Office closed")
    db.commit()
    assert len(created) == 2

    mine = service.list_notifications(db, lawyer)
    assert service.unread_count(db, lawyer) == 1
    with pytest.raises(NotFoundError):
        service.mark_read(db, admin, mine[0].id)

    service.mark_read(db, lawyer, mine[0].id)
    assert service.unread_count(db, lawyer) == 0
    assert service.mark_all_read(db, admin) == 1
    assert service.stats(db, admin)["by_type"] == {"SYSTEM": 1}


def test_cleanup_is_limited_to_firm(db, firm, lawyer) -> None:
    from lawpractice.services.tenancy_service import tenancy_service

    _, outsider = tenancy_service.register_firm(db, "Wang Law", "wang", "wang@wanglaw.cn", "password123")
    now = utcnow()
    db.add_all([
        Notification(firm_id=firm.id, user_id=lawyer.id, notification_type="SYSTEM", title="old", message="m",
                     priority="NORMAL", is_read=True, created_at=now - timedelta(days=120)),
        Notification(firm_id=firm.id, user_id=lawyer.id, notification_type="SYSTEM", title="expired",
                     message="m", priority="NORMAL", is_read=False, expires_at=now - timedelta(days=1)),
        Notification(firm_id=firm.id, user_id=lawyer.id, notification_type="SYSTEM", title="fresh", message="m",
                     priority="NORMAL", is_read=True, created_at=now),
        Notification(firm_id=outsider.firm_id, user_id=outsider.id, notification_type="SYSTEM", title="theirs",
                     message="m", priority="NORMAL", is_read=False, expires_at=now - timedelta(days=1)),
    ])
    db.commit()

    removed = NotificationService(email_sender=RecordingSender()).cleanup(db, firm_id=firm.id, now=now)

    assert removed == 2
    assert sorted(n.title for n in db.query(Notification).all()) == ["fresh", "theirs"]


def test_quiet_hours_keep_email_for_digest(db, lawyer) -> None:
    sender = RecordingSender()
    service = NotificationService(email_sender=sender)
    service.update_preferences(db, lawyer.id, {"quiet_hours_start": "22:00", "quiet_hours_end": "07:00"})

    hidden = service.notify(db, lawyer, NotificationType.CASE_UPDATE, "Late update", "Hearing adjourned",
                            now=SHANGHAI_NIGHT)
    db.commit()

    assert hidden is None
    assert sender.sent == []
    assert service.list_notifications(db, lawyer) == []
    assert service.unread_count(db, lawyer) == 0

    assert service.send_digest(db, lawyer) == {"sent": True, "count": 1}
    assert "Hearing adjourned" in sender.sent[0][2]
    assert db.query(Notification).filter(Notification.user_id == lawyer.id).count() == 0


def test_digest_when_in_app_is_disabled(db, lawyer) -> None:
    sender = RecordingSender()
    service = NotificationService(email_sender=sender)
    service.update_preferences(db, lawyer.id, {"in_app_enabled": False, "email_frequency": "DAILY"})

    assert service.notify(db, lawyer, NotificationType.BILLING, "Invoice issued", "INV2024030001 issued") is None
    db.commit()
    assert service.stats(db, lawyer)["total"] == 0

    assert service.send_digest(db, lawyer) == {"sent": True, "count": 1}
    assert service.send_digest(db, lawyer) == {"sent": False, "count": 0}
