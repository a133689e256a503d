from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field as PydField, field_validator

from ..models.checkin import Checkin
from ..models.person import Person
from ..services.member_stages import FollowupStage, stage_label
from ..services.status_rules import (
    CanonicalStatus,
    EntityKind,
    status_color_class,
    to_export_label,
)

# "HH:MM" 24h, as entered in the follow-up dialogs
TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# -----------------------------
# People
# -----------------------------

class PersonOut(BaseModel):
    """
    Person as returned by the API: stored status plus its normalized forms.
    """
    id: int
    ministry_id: int
    kind: EntityKind

    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    country: Optional[str] = None

    self_submitted: bool = False
    wants_contact: Optional[bool] = None
    prayer_request: Optional[str] = None
    summary_notes: Optional[str] = None

    status: str
    display_status: CanonicalStatus
    status_label: str
    status_color: str
    status_changed_at: datetime
    status_changed_reason: Optional[str] = None

    next_followup_date: Optional[date] = None
    next_followup_time: Optional[str] = None
    video_link: Optional[str] = None
    followup_checkin_id: Optional[int] = None

    # New Members only
    followup_stage: Optional[FollowupStage] = None
    followup_stage_label: Optional[str] = None
    followup_stage_changed_at: Optional[datetime] = None

    created_by_leader_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class PersonDetail(PersonOut):
    checkins: List[Checkin] = []


def person_out(p: Person) -> PersonOut:
    return PersonOut(
        **p.model_dump(),
        display_status=p.display_status(),
        status_label=to_export_label(p.status),
        status_color=status_color_class(p.status),
        followup_stage_label=stage_label(p.followup_stage) if p.tracks_followup_stage() else None,
    )


# -----------------------------
# Check-ins
# -----------------------------

class CheckinCreate(BaseModel):
    """
    outcome is a plain string: vocabulary is checked per entity kind
    by the status rules and reported as a 400, not a schema 422.
    """
    outcome: str = PydField(..., min_length=1, max_length=64)
    notes: Optional[str] = PydField(default=None, max_length=5000)
    checkin_date: Optional[date] = None

    next_followup_date: Optional[date] = None
    next_followup_time: Optional[str] = PydField(default=None, pattern=TIME_PATTERN)
    video_link: Optional[str] = PydField(default=None, max_length=500)

    leader_id: Optional[int] = None


class ScheduleFollowup(BaseModel):
    next_followup_date: date
    next_followup_time: Optional[str] = PydField(default=None, pattern=TIME_PATTERN)
    video_link: Optional[str] = PydField(default=None, max_length=500)
    notes: Optional[str] = PydField(default=None, max_length=5000)
    outcome: Optional[str] = PydField(default=None, max_length=64)
    leader_id: Optional[int] = None


class CheckinResponse(BaseModel):
    checkin: Checkin
    person: PersonOut
    closed_checkin_id: Optional[int] = None
    reminders_queued: int = 0


class FollowupOut(BaseModel):
    person_id: int
    checkin_id: Optional[int] = None
    kind: EntityKind
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    next_followup_date: date
    next_followup_time: Optional[str] = None
    video_link: Optional[str] = None
    overdue: bool = False


# -----------------------------
# People input
# -----------------------------

def _required_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


class PersonCreate(BaseModel):
    ministry_id: int
    kind: EntityKind
    first_name: str = PydField(..., min_length=1, max_length=120)
    last_name: str = PydField(..., min_length=1, max_length=120)

    email: Optional[EmailStr] = None
    phone: Optional[str] = PydField(default=None, max_length=40)
    address: Optional[str] = None
    country: Optional[str] = None

    wants_contact: Optional[bool] = None
    prayer_request: Optional[str] = PydField(default=None, max_length=5000)
    summary_notes: Optional[str] = PydField(default=None, max_length=5000)

    leader_id: Optional[int] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def _norm_names(cls, v: str) -> str:
        return _required_name(v)


class PublicRegistration(BaseModel):
    """
    Self-submitted form (no leader). kind defaults to CONVERT, the salvation form.
    """
    kind: EntityKind = EntityKind.CONVERT
    first_name: str = PydField(..., min_length=1, max_length=120)
    last_name: str = PydField(..., min_length=1, max_length=120)

    email: Optional[EmailStr] = None
    phone: Optional[str] = PydField(default=None, max_length=40)
    address: Optional[str] = None
    country: Optional[str] = None

    wants_contact: Optional[bool] = None
    prayer_request: Optional[str] = PydField(default=None, max_length=5000)

    @field_validator("first_name", "last_name")
    @classmethod
    def _norm_names(cls, v: str) -> str:
        return _required_name(v)


class PersonPatch(BaseModel):
    """
    Partial update of contact fields. Status is never patched directly;
    it only moves through check-ins.
    """
    first_name: Optional[str] = PydField(default=None, min_length=1, max_length=120)
    last_name: Optional[str] = PydField(default=None, min_length=1, max_length=120)
    email: Optional[EmailStr] = None
    phone: Optional[str] = PydField(default=None, max_length=40)
    address: Optional[str] = None
    country: Optional[str] = None
    wants_contact: Optional[bool] = None
    prayer_request: Optional[str] = PydField(default=None, max_length=5000)
    summary_notes: Optional[str] = PydField(default=None, max_length=5000)

    @field_validator("first_name", "last_name")
    @classmethod
    def _norm_names(cls, v: Optional[str]) -> Optional[str]:
        # explicit null means "leave unchanged"; blank is rejected
        return _required_name(v)
