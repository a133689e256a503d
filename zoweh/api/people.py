from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from sqlalchemy import or_
from sqlmodel import Session, select

from ..database import get_session
from ..models.audit_log import AuditLog
from ..models.checkin import Checkin
from ..models.ministry import Leader, Ministry
from ..models.person import Person
from ..services import status_events
from ..services.member_stages import FollowupStage
from ..services.status_rules import (
    CanonicalStatus,
    EntityKind,
    StatusToken,
    persisted_tokens_for,
)
from .schemas import (
    PersonCreate,
    PersonDetail,
    PersonOut,
    PersonPatch,
    PublicRegistration,
    person_out,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["people"])


# -----------------------------
# Guardrails / helpers
# -----------------------------

def _get_active_ministry(session: Session, ministry_id: int) -> Ministry:
    m = session.get(Ministry, ministry_id)
    if not m:
        raise HTTPException(status_code=404, detail="Ministry not found")
    if m.archived:
        raise HTTPException(status_code=403, detail="Ministry is archived")
    return m


def _ensure_leader_in_ministry(session: Session, leader_id: Optional[int], ministry_id: int) -> None:
    if leader_id is None:
        return
    leader = session.get(Leader, leader_id)
    if not leader:
        raise HTTPException(status_code=400, detail="Leader not found")
    if leader.ministry_id != ministry_id:
        raise HTTPException(status_code=403, detail="Leader belongs to another ministry")


def _clean(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    s = str(raw).strip()
    return s or None


def _create_person(session: Session, ministry_id: int, payload, *, leader_id: Optional[int], self_submitted: bool) -> Person:
    """
    Every person starts NEW regardless of kind. New Members also start
    their follow-up arc at stage NEW.
    """
    person = Person(
        ministry_id=ministry_id,
        kind=payload.kind,
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        email=str(payload.email).lower() if payload.email else None,
        phone=_clean(payload.phone),
        address=_clean(payload.address),
        country=_clean(payload.country),
        wants_contact=payload.wants_contact,
        prayer_request=_clean(payload.prayer_request),
        summary_notes=_clean(getattr(payload, "summary_notes", None)),
        self_submitted=self_submitted,
        status=StatusToken.NEW.value,
        status_changed_reason="public:register" if self_submitted else "manual:create",
        created_by_leader_id=leader_id,
    )
    session.add(person)
    if person.tracks_followup_stage():
        person.followup_stage = FollowupStage.NEW
        person.followup_stage_changed_at = person.created_at
    session.flush()
    session.add(
        AuditLog(
            actor_leader_id=leader_id,
            action="CREATE",
            entity_type="PERSON",
            entity_id=person.id,
            detail=person.kind.value,
        )
    )
    session.commit()
    session.refresh(person)

    status_events.publish(
        status_events.StatusChange(
            ministry_id=person.ministry_id,
            person_id=person.id,
            kind=person.kind,
            previous_status=None,
            new_status=CanonicalStatus.NEW,
            reason=person.status_changed_reason,
            followup_stage=person.followup_stage.value if person.followup_stage else None,
        )
    )
    return person


# -----------------------------
# Routes
# -----------------------------

@router.post("/people", response_model=PersonOut, status_code=201)
def create_person(payload: PersonCreate) -> PersonOut:
    """
    Leader-entered person.
    """
    with get_session() as session:
        _get_active_ministry(session, payload.ministry_id)
        _ensure_leader_in_ministry(session, payload.leader_id, payload.ministry_id)
        person = _create_person(
            session,
            payload.ministry_id,
            payload,
            leader_id=payload.leader_id,
            self_submitted=False,
        )
        return person_out(person)


@router.post("/register/{public_token}", response_model=PersonOut, status_code=201)
def register_person(public_token: str, payload: PublicRegistration) -> PersonOut:
    """
    Public self-submission through a ministry's registration link.
    """
    with get_session() as session:
        ministry = session.exec(select(Ministry).where(Ministry.public_token == public_token)).first()
        if not ministry:
            raise HTTPException(status_code=404, detail="Registration link not found")
        if ministry.archived:
            raise HTTPException(status_code=403, detail="This ministry is no longer accepting registrations")

        person = _create_person(session, ministry.id, payload, leader_id=None, self_submitted=True)
        logger.info("public registration ministry=%s person=%s kind=%s", ministry.id, person.id, person.kind.value)
        return person_out(person)


def people_query(
    ministry_id: Optional[int] = None,
    kind: Optional[EntityKind] = None,
    status: Optional[CanonicalStatus] = None,
    search: Optional[str] = None,
    followup_stage: Optional[FollowupStage] = None,
):
    """
    Shared filter for list + export. `status` is canonical and matches
    every stored token (legacy included) that displays as it.
    """
    q = select(Person)
    if ministry_id is not None:
        q = q.where(Person.ministry_id == ministry_id)
    if kind is not None:
        q = q.where(Person.kind == kind)
    if status is not None:
        tokens = sorted(t.value for t in persisted_tokens_for(status))
        q = q.where(Person.status.in_(tokens))  # type: ignore[attr-defined]
    if followup_stage is not None:
        q = q.where(Person.followup_stage == followup_stage)
    if search:
        like = f"%{search.strip().lower()}%"
        q = q.where(
            or_(
                Person.first_name.ilike(like),  # type: ignore[attr-defined]
                Person.last_name.ilike(like),  # type: ignore[attr-defined]
                Person.email.ilike(like),  # type: ignore[union-attr]
                Person.phone.ilike(like),  # type: ignore[union-attr]
            )
        )
    return q


@router.get("/people", response_model=List[PersonOut])
def list_people(
    ministry_id: Optional[int] = None,
    kind: Optional[EntityKind] = None,
    status: Optional[CanonicalStatus] = None,
    search: Optional[str] = None,
    followup_stage: Optional[FollowupStage] = None,
    limit: int = 200,
    offset: int = 0,
) -> List[PersonOut]:
    """
    List people with filtering + pagination (newest first).
    """
    limit = max(1, min(limit, 1000))
    offset = max(0, offset)

    with get_session() as session:
        q = people_query(ministry_id, kind, status, search, followup_stage)
        q = q.order_by(Person.id.desc()).offset(offset).limit(limit)
        return [person_out(p) for p in session.exec(q).all()]


@router.get("/people/{person_id}", response_model=PersonDetail)
def get_person(person_id: int) -> PersonDetail:
    with get_session() as session:
        p = session.get(Person, person_id)
        if not p:
            raise HTTPException(status_code=404, detail="Person not found")
        checkins = session.exec(
            select(Checkin)
            .where(Checkin.person_id == person_id)
            .order_by(Checkin.checkin_date.desc(), Checkin.id.desc())
        ).all()
        return PersonDetail(**person_out(p).model_dump(), checkins=list(checkins))


@router.patch("/people/{person_id}", response_model=PersonOut)
def patch_person(person_id: int, payload: PersonPatch) -> PersonOut:
    """
    Partial update of contact fields. Fields omitted are left unchanged.
    """
    with get_session() as session:
        p = session.get(Person, person_id)
        if not p:
            raise HTTPException(status_code=404, detail="Person not found")

        changes = payload.model_dump(exclude_unset=True)
        for field, value in changes.items():
            if field == "email" and value is not None:
                value = str(value).lower()
            elif isinstance(value, str):
                value = _clean(value)
            if value is None and field in ("first_name", "last_name"):
                continue
            setattr(p, field, value)

        if changes:
            p.touch()
            session.add(p)
            session.add(
                AuditLog(
                    action="UPDATE",
                    entity_type="PERSON",
                    entity_id=p.id,
                    detail=",".join(sorted(changes)),
                )
            )
            session.commit()
            session.refresh(p)
        return person_out(p)
