from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlmodel import SQLModel, Field

from ..services.status_rules import Outcome
from .person import utcnow


class Checkin(SQLModel, table=True):
    """
    One follow-up contact attempt. Append-only history for a person.

    Notes:
    - outcome is an Outcome value; vocabulary checks happen in status_rules.apply_outcome.
    - next_followup_* is copied from the request when this check-in scheduled a follow-up.
    - closed_at is the only field written after insert: it is set when the
      follow-up this check-in scheduled is completed by a later check-in or expires.
    """

    __tablename__ = "checkins"

    id: Optional[int] = Field(default=None, primary_key=True)

    person_id: int = Field(foreign_key="people.id", index=True)
    ministry_id: int = Field(foreign_key="ministries.id", index=True)
    created_by_leader_id: Optional[int] = Field(default=None, foreign_key="leaders.id", index=True)

    checkin_date: date = Field(index=True)
    outcome: Outcome = Field(index=True)
    notes: Optional[str] = Field(default=None)

    next_followup_date: Optional[date] = Field(default=None, index=True)
    next_followup_time: Optional[str] = Field(default=None)
    video_link: Optional[str] = Field(default=None)

    closed_at: Optional[datetime] = Field(default=None, index=True)
    closed_by_checkin_id: Optional[int] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow, index=True)

    def schedules_followup(self) -> bool:
        return self.next_followup_date is not None

    def is_open(self) -> bool:
        return self.schedules_followup() and self.closed_at is None
