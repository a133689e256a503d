from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field

from .person import utcnow


class ReminderKind(str, Enum):
    DAY_BEFORE = "DAY_BEFORE"
    IMMEDIATE = "IMMEDIATE"


class RecipientRole(str, Enum):
    LEADER = "LEADER"
    PERSON = "PERSON"


class ReminderStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    SKIPPED = "SKIPPED"  # no address to deliver to
    CANCELLED = "CANCELLED"  # follow-up closed before send_on


class FollowupReminder(SQLModel, table=True):
    """
    A queued follow-up notification.

    The check-in flow only decides *whether* and *for when*; delivery is done by
    the reminder sweep through a Notifier. The unique constraint keeps a reminder
    from being queued (and so sent) twice for the same scheduled check-in.
    """

    __tablename__ = "followup_reminders"
    __table_args__ = (
        UniqueConstraint("checkin_id", "kind", "recipient_role", name="uq_reminder_checkin_kind_role"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)

    checkin_id: int = Field(foreign_key="checkins.id", index=True)
    person_id: int = Field(foreign_key="people.id", index=True)

    kind: ReminderKind = Field(index=True)
    recipient_role: RecipientRole = Field(index=True)
    recipient_email: Optional[str] = Field(default=None)

    send_on: date = Field(index=True)
    scheduled_date: date
    scheduled_time: Optional[str] = Field(default=None)
    video_link: Optional[str] = Field(default=None)

    status: ReminderStatus = Field(default=ReminderStatus.PENDING, index=True)
    attempts: int = Field(default=0)
    last_error: Optional[str] = Field(default=None)
    sent_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow, index=True)
