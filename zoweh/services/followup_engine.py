from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional, Union

from sqlmodel import Session, select

from ..models.audit_log import AuditLog
from ..models.checkin import Checkin
from ..models.person import Person, utcnow
from . import status_events
from .member_stages import FollowupStage, coerce_stage, stage_after_checkin
from .notifications import cancel_pending_for_checkin
from .status_rules import (
    CanonicalStatus,
    FollowupSchedule,
    Outcome,
    StatusRuleError,
    StatusToken,
    TransitionResult,
    apply_outcome,
    can_transition,
    to_canonical_status,
)

logger = logging.getLogger(__name__)


class FollowupClosedError(RuntimeError):
    """
    The scheduled check-in being completed is no longer the person's
    outstanding follow-up (already completed, expired, or rescheduled).
    """

    def __init__(self, checkin_id: int) -> None:
        self.checkin_id = checkin_id
        super().__init__(f"Follow-up {checkin_id} is already closed")


@dataclass(frozen=True)
class CheckinOutcome:
    """
    Result of recording a check-in, for API handlers and the notification step.
    """

    checkin: Checkin
    transition: TransitionResult
    previous_status: CanonicalStatus
    closed_checkin_id: Optional[int] = None

    @property
    def new_status(self) -> CanonicalStatus:
        return self.transition.display_status

    @property
    def scheduled(self) -> bool:
        return self.transition.scheduled_followup is not None


def _clean_text(raw: Optional[str], max_len: int = 5000) -> Optional[str]:
    if raw is None:
        return None
    s = str(raw).strip()
    if not s:
        return None
    return s[:max_len]


def load_person_for_update(session: Session, person_id: int) -> Optional[Person]:
    """
    Load a person with a row lock so concurrent check-ins for the same person
    serialize (SELECT ... FOR UPDATE on Postgres; SQLite already serializes writers).
    """
    stmt = (
        select(Person)
        .where(Person.id == person_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return session.exec(stmt).first()


def _publish(person: Person, previous: Optional[CanonicalStatus], reason: Optional[str]) -> None:
    status_events.publish(
        status_events.StatusChange(
            ministry_id=person.ministry_id,
            person_id=person.id,
            kind=person.kind,
            previous_status=previous,
            new_status=person.display_status(),
            next_followup_date=person.next_followup_date,
            reason=reason,
            followup_stage=coerce_stage(person.followup_stage).value if person.followup_stage else None,
        )
    )


def _apply_stage(person: Person, new_status: CanonicalStatus) -> None:
    if not person.tracks_followup_stage():
        return
    current = coerce_stage(person.followup_stage)
    stage = stage_after_checkin(current, new_status)
    if person.followup_stage is None or stage != current:
        person.followup_stage = stage
        person.followup_stage_changed_at = utcnow()


def _close_outstanding(session: Session, person: Person, closing_checkin_id: int) -> Optional[int]:
    """
    Close the check-in that scheduled the person's outstanding follow-up, if any.
    Does not commit.
    """
    if person.followup_checkin_id is None:
        return None

    prior = session.get(Checkin, person.followup_checkin_id)
    if prior is None or prior.closed_at is not None:
        return None

    prior.closed_at = utcnow()
    prior.closed_by_checkin_id = closing_checkin_id
    session.add(prior)
    cancel_pending_for_checkin(session, prior.id)
    return prior.id


def record_checkin(
    session: Session,
    person: Person,
    outcome: Union[Outcome, str],
    *,
    notes: Optional[str] = None,
    checkin_date: Optional[date] = None,
    scheduling: Optional[FollowupSchedule] = None,
    leader_id: Optional[int] = None,
    reason: Optional[str] = None,
    allow_system: bool = False,
) -> CheckinOutcome:
    """
    Append a check-in and apply its transition to the person.

    Behavior:
    - Validates the outcome against the person's kind (InvalidOutcomeForEntityError).
    - An explicit next-appointment date forces SCHEDULED and becomes the
      person's single outstanding follow-up.
    - Any previously outstanding follow-up is closed (completed or replaced).
    - Without a date, the person is left with no outstanding follow-up.
    - New Members move along their follow-up stage (member_stages.stage_after_checkin).
    - Commits, refreshes, then publishes a StatusChange.

    Callers should hold the person row via load_person_for_update().
    """
    transition = apply_outcome(person.kind, outcome, scheduling, allow_system=allow_system)

    previous = person.display_status()
    allowed, why = can_transition(person.status, transition.new_status)
    if not allowed:
        raise StatusRuleError(f"Person {person.id}: transition blocked ({why})")

    scheduled = transition.scheduled_followup
    checkin = Checkin(
        person_id=person.id,
        ministry_id=person.ministry_id,
        created_by_leader_id=leader_id,
        checkin_date=checkin_date or date.today(),
        outcome=transition.outcome,
        notes=_clean_text(notes),
        next_followup_date=scheduled.date if scheduled else None,
        next_followup_time=_clean_text(scheduled.time, 16) if scheduled else None,
        video_link=_clean_text(scheduled.video_link, 500) if scheduled else None,
    )
    session.add(checkin)
    session.flush()  # assigns checkin.id

    closed_id = _close_outstanding(session, person, checkin.id)

    reason = reason or f"checkin:{transition.outcome.value}"
    if person.status != transition.new_status.value:
        person.status = transition.new_status.value
        person.status_changed_at = utcnow()
        person.status_changed_reason = reason

    if scheduled is not None:
        person.next_followup_date = checkin.next_followup_date
        person.next_followup_time = checkin.next_followup_time
        person.video_link = checkin.video_link
        person.followup_checkin_id = checkin.id
    else:
        person.clear_followup()
    _apply_stage(person, transition.display_status)
    person.touch()
    session.add(person)

    session.add(
        AuditLog(
            actor_leader_id=leader_id,
            action="CHECKIN",
            entity_type="CHECKIN",
            entity_id=checkin.id,
            detail=f"{transition.outcome.value}->{transition.new_status.value}",
        )
    )

    session.commit()
    session.refresh(checkin)
    session.refresh(person)

    logger.info(
        "checkin person=%s outcome=%s status=%s->%s followup=%s",
        person.id,
        transition.outcome.value,
        previous.value,
        transition.display_status.value,
        person.next_followup_date,
    )
    _publish(person, previous, reason)

    return CheckinOutcome(
        checkin=checkin,
        transition=transition,
        previous_status=previous,
        closed_checkin_id=closed_id,
    )


def complete_checkin(
    session: Session,
    scheduled: Checkin,
    outcome: Union[Outcome, str],
    **kwargs,
) -> CheckinOutcome:
    """
    Complete a scheduled follow-up by recording the contact's outcome.

    The scheduled check-in must still be the person's outstanding follow-up,
    otherwise FollowupClosedError. The scheduled row itself is only closed;
    the outcome lands on a new check-in.
    """
    person = load_person_for_update(session, scheduled.person_id)
    if person is None:
        raise LookupError(f"Person {scheduled.person_id} not found")

    session.refresh(scheduled)
    if not scheduled.is_open() or person.followup_checkin_id != scheduled.id:
        raise FollowupClosedError(scheduled.id)

    return record_checkin(session, person, outcome, **kwargs)


def set_status(
    session: Session,
    person: Person,
    new_status: Union[StatusToken, str],
    reason: str,
) -> bool:
    """
    Direct status write used by sweeps (e.g. NEVER_CONTACTED).

    - No-op if the stored token is unchanged.
    - Goes through can_transition like check-ins do.
    - Commits, refreshes and publishes a StatusChange.

    Returns True if the person changed.
    """
    if not reason or not str(reason).strip():
        reason = "unspecified"

    token = StatusToken(new_status)
    previous = person.display_status()

    allowed, why = can_transition(person.status, token)
    if not allowed:
        logger.warning("status change blocked person=%s %s (%s)", person.id, why, reason)
        return False

    if person.status == token.value:
        return False

    person.status = token.value
    person.status_changed_at = utcnow()
    person.status_changed_reason = reason
    person.touch()
    session.add(person)
    session.add(
        AuditLog(
            action="STATUS",
            entity_type="PERSON",
            entity_id=person.id,
            detail=f"{previous.value}->{to_canonical_status(token).value} ({reason})",
        )
    )
    session.commit()
    session.refresh(person)

    _publish(person, previous, reason)
    return True


def set_followup_stage(
    session: Session,
    person: Person,
    new_stage: Union[FollowupStage, str],
    reason: str,
) -> bool:
    """
    Direct New Member stage write used by the stage sweeps.
    No-op (False) for other kinds or when the stage is unchanged.
    """
    if not person.tracks_followup_stage():
        return False

    stage = FollowupStage(new_stage)
    current = coerce_stage(person.followup_stage)
    if person.followup_stage is not None and current == stage:
        return False

    person.followup_stage = stage
    person.followup_stage_changed_at = utcnow()
    person.touch()
    session.add(person)
    session.add(
        AuditLog(
            action="STAGE",
            entity_type="PERSON",
            entity_id=person.id,
            detail=f"{current.value}->{stage.value} ({reason})",
        )
    )
    session.commit()
    session.refresh(person)

    logger.info("followup stage person=%s %s->%s (%s)", person.id, current.value, stage.value, reason)
    _publish(person, person.display_status(), reason)
    return True
