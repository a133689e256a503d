from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from sqlmodel import Session, select

from ..database import get_session
from ..models.checkin import Checkin
from ..models.person import Person
from ..services.followup_engine import (
    CheckinOutcome,
    complete_checkin,
    load_person_for_update,
    record_checkin,
)
from ..services.notifications import queue_followup_notices
from ..services.status_rules import SCHEDULING_OUTCOME, EntityKind, FollowupSchedule
from .people import _ensure_leader_in_ministry
from .schemas import (
    CheckinCreate,
    CheckinResponse,
    FollowupOut,
    ScheduleFollowup,
    person_out,
)

router = APIRouter(tags=["checkins"])


def _schedule_from(payload: CheckinCreate) -> Optional[FollowupSchedule]:
    if payload.next_followup_date is None:
        return None
    return FollowupSchedule(
        date=payload.next_followup_date,
        time=payload.next_followup_time,
        video_link=payload.video_link,
    )


def _respond(session: Session, result: CheckinOutcome, leader_id: Optional[int]) -> CheckinResponse:
    """
    Queue notices for a newly scheduled follow-up (caller-side, the transition
    itself stays pure), then build the response.
    """
    person = session.get(Person, result.checkin.person_id)
    reminders = []
    if result.scheduled:
        reminders = queue_followup_notices(session, person, result.checkin, leader_id=leader_id)
    # queueing commits, which expires both rows
    session.refresh(result.checkin)
    session.refresh(person)
    return CheckinResponse(
        checkin=result.checkin,
        person=person_out(person),
        closed_checkin_id=result.closed_checkin_id,
        reminders_queued=len(reminders),
    )


def _lock_person(session: Session, person_id: int) -> Person:
    p = load_person_for_update(session, person_id)
    if not p:
        raise HTTPException(status_code=404, detail="Person not found")
    return p


# -----------------------------
# Routes
# -----------------------------

@router.post("/people/{person_id}/checkins", response_model=CheckinResponse, status_code=201)
def create_checkin(person_id: int, payload: CheckinCreate) -> CheckinResponse:
    """
    Record a follow-up contact (add note).

    - outcome must fit the person's kind (400 otherwise)
    - next_followup_date, if given, schedules the next follow-up and forces SCHEDULED
    - otherwise any outstanding follow-up is closed
    """
    with get_session() as session:
        person = _lock_person(session, person_id)
        _ensure_leader_in_ministry(session, payload.leader_id, person.ministry_id)

        result = record_checkin(
            session,
            person,
            payload.outcome,
            notes=payload.notes,
            checkin_date=payload.checkin_date,
            scheduling=_schedule_from(payload),
            leader_id=payload.leader_id,
        )
        return _respond(session, result, payload.leader_id)


@router.post("/people/{person_id}/schedule-followup", response_model=CheckinResponse, status_code=201)
def schedule_followup(person_id: int, payload: ScheduleFollowup) -> CheckinResponse:
    """
    Schedule the next follow-up. The outcome defaults per kind
    (Convert SCHEDULED_VISIT, New Member NEEDS_FOLLOWUP, Member CONNECTED).
    """
    with get_session() as session:
        person = _lock_person(session, person_id)
        _ensure_leader_in_ministry(session, payload.leader_id, person.ministry_id)

        outcome = payload.outcome or SCHEDULING_OUTCOME[EntityKind(person.kind)]
        result = record_checkin(
            session,
            person,
            outcome,
            notes=payload.notes,
            scheduling=FollowupSchedule(
                date=payload.next_followup_date,
                time=payload.next_followup_time,
                video_link=payload.video_link,
            ),
            leader_id=payload.leader_id,
            reason="manual:schedule",
        )
        return _respond(session, result, payload.leader_id)


@router.patch("/checkins/{checkin_id}/complete", response_model=CheckinResponse)
def complete_scheduled_checkin(checkin_id: int, payload: CheckinCreate) -> CheckinResponse:
    """
    Complete a scheduled follow-up. 409 if it was already completed, expired or replaced.
    A next_followup_date in the payload schedules the next one in the same step.
    """
    with get_session() as session:
        scheduled = session.get(Checkin, checkin_id)
        if not scheduled:
            raise HTTPException(status_code=404, detail="Check-in not found")
        if not scheduled.schedules_followup():
            raise HTTPException(status_code=400, detail="Check-in did not schedule a follow-up")
        _ensure_leader_in_ministry(session, payload.leader_id, scheduled.ministry_id)

        result = complete_checkin(
            session,
            scheduled,
            payload.outcome,
            notes=payload.notes,
            checkin_date=payload.checkin_date,
            scheduling=_schedule_from(payload),
            leader_id=payload.leader_id,
            reason=f"complete:{checkin_id}",
        )
        return _respond(session, result, payload.leader_id)


@router.get("/people/{person_id}/checkins", response_model=List[Checkin])
def list_checkins(person_id: int) -> List[Checkin]:
    with get_session() as session:
        if not session.get(Person, person_id):
            raise HTTPException(status_code=404, detail="Person not found")
        return list(
            session.exec(
                select(Checkin)
                .where(Checkin.person_id == person_id)
                .order_by(Checkin.checkin_date.desc(), Checkin.id.desc())
            ).all()
        )


@router.get("/followups", response_model=List[FollowupOut])
def list_followups(
    ministry_id: Optional[int] = None,
    until: Optional[date] = None,
    kind: Optional[EntityKind] = None,
) -> List[FollowupOut]:
    """
    Outstanding follow-ups, soonest first. Overdue rows are flagged until the
    expiry sweep closes them.
    """
    today = date.today()
    with get_session() as session:
        q = select(Person).where(Person.next_followup_date.is_not(None))  # type: ignore[union-attr]
        if ministry_id is not None:
            q = q.where(Person.ministry_id == ministry_id)
        if kind is not None:
            q = q.where(Person.kind == kind)
        if until is not None:
            q = q.where(Person.next_followup_date <= until)
        q = q.order_by(Person.next_followup_date, Person.next_followup_time, Person.id)

        return [
            FollowupOut(
                person_id=p.id,
                checkin_id=p.followup_checkin_id,
                kind=p.kind,
                name=p.full_name,
                email=p.email,
                phone=p.phone,
                next_followup_date=p.next_followup_date,
                next_followup_time=p.next_followup_time,
                video_link=p.video_link,
                overdue=p.next_followup_date < today,
            )
            for p in session.exec(q).all()
        ]
