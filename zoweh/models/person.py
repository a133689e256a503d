from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from sqlmodel import SQLModel, Field

from ..services.member_stages import FollowupStage
from ..services.status_rules import (
    CanonicalStatus,
    EntityKind,
    StatusToken,
    to_canonical_status,
)


def utcnow() -> datetime:
    # timezone-aware UTC for future-proofing
    return datetime.now(timezone.utc)


class Person(SQLModel, table=True):
    """
    A Trackable Person: a Convert, New Member/Guest or Member of one ministry.

    Notes:
    - status is stored as the raw token string (not an Enum column) because
      imported rows may carry legacy values; read it through display_status().
    - next_followup_* describes the single outstanding follow-up, if any.
      followup_checkin_id points at the check-in that scheduled it.
    - People are never hard-deleted; archive the ministry instead.
    """

    __tablename__ = "people"

    id: Optional[int] = Field(default=None, primary_key=True)

    ministry_id: int = Field(foreign_key="ministries.id", index=True)
    kind: EntityKind = Field(index=True)

    first_name: str
    last_name: str

    # Contact details (optional)
    email: Optional[str] = Field(default=None, index=True)
    phone: Optional[str] = Field(default=None, index=True)
    address: Optional[str] = Field(default=None)
    country: Optional[str] = Field(default=None)

    # Public-form submissions vs. leader-entered records
    self_submitted: bool = Field(default=False, index=True)
    wants_contact: Optional[bool] = Field(default=None)
    prayer_request: Optional[str] = Field(default=None)
    summary_notes: Optional[str] = Field(default=None)

    # ---- Follow-up lifecycle ----
    status: str = Field(default=StatusToken.NEW.value, index=True)
    status_changed_at: datetime = Field(default_factory=utcnow, index=True)
    status_changed_reason: Optional[str] = Field(default=None)  # e.g. "checkin:CONNECTED", "auto:expired"

    next_followup_date: Optional[date] = Field(default=None, index=True)
    next_followup_time: Optional[str] = Field(default=None)
    video_link: Optional[str] = Field(default=None)
    followup_checkin_id: Optional[int] = Field(default=None, index=True)

    # ---- New Member follow-up arc (None for converts and members) ----
    followup_stage: Optional[FollowupStage] = Field(default=None, index=True)
    followup_stage_changed_at: Optional[datetime] = Field(default=None, index=True)

    created_by_leader_id: Optional[int] = Field(default=None, foreign_key="leaders.id", index=True)

    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)

    # -------------------------
    # Convenience helpers (safe to use in services)
    # -------------------------

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def display_status(self) -> CanonicalStatus:
        return to_canonical_status(self.status)

    def tracks_followup_stage(self) -> bool:
        return EntityKind(self.kind) == EntityKind.NEW_MEMBER

    def has_outstanding_followup(self) -> bool:
        return self.next_followup_date is not None

    def clear_followup(self) -> None:
        self.next_followup_date = None
        self.next_followup_time = None
        self.video_link = None
        self.followup_checkin_id = None

    def touch(self) -> None:
        self.updated_at = utcnow()
