from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, time as dtime, timedelta, timezone
from typing import Optional

from sqlalchemy import exists, or_
from sqlmodel import Session, select

from ..config import settings
from ..database import session_scope
from ..models.checkin import Checkin
from ..models.person import Person, utcnow
from ..models.reminder import FollowupReminder, ReminderStatus
from .followup_engine import load_person_for_update, record_checkin, set_followup_stage, set_status
from .member_stages import AUTO_PROGRESSION, UNCONTACTED_STAGES, FollowupStage
from .notifications import NotificationError, Notifier, get_notifier
from .status_rules import EntityKind, Outcome, StatusToken

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    reminders_sent: int = 0
    reminders_skipped: int = 0
    reminders_failed: int = 0
    followups_expired: int = 0
    never_contacted: int = 0
    new_members_to_contact: int = 0
    new_members_progressed: int = 0


def process_due_reminders(session: Session, notifier: Notifier, today: Optional[date] = None) -> SweepReport:
    """
    Deliver PENDING reminders whose send_on has arrived.

    - no recipient address -> SKIPPED
    - delivery failure -> stays PENDING (attempts/last_error updated) for the next run
    """
    today = today or date.today()
    report = SweepReport()

    due = session.exec(
        select(FollowupReminder)
        .where(
            FollowupReminder.status == ReminderStatus.PENDING,
            FollowupReminder.send_on <= today,
        )
        .order_by(FollowupReminder.send_on, FollowupReminder.id)
    ).all()

    for reminder in due:
        person = session.get(Person, reminder.person_id)

        if person is None or not reminder.recipient_email:
            reminder.status = ReminderStatus.SKIPPED
            session.add(reminder)
            session.commit()
            report.reminders_skipped += 1
            logger.info("reminder %s skipped (no recipient)", reminder.id)
            continue

        reminder.attempts += 1
        try:
            notifier.send(reminder, person)
        except NotificationError as e:
            reminder.last_error = str(e)[:500]
            session.add(reminder)
            session.commit()
            report.reminders_failed += 1
            logger.warning("reminder %s delivery failed: %s", reminder.id, e)
            continue

        reminder.status = ReminderStatus.SENT
        reminder.sent_at = utcnow()
        reminder.last_error = None
        session.add(reminder)
        session.commit()
        report.reminders_sent += 1

    if due:
        logger.info(
            "reminders: %s sent, %s skipped, %s failed",
            report.reminders_sent,
            report.reminders_skipped,
            report.reminders_failed,
        )
    return report


def process_expired_followups(session: Session, today: Optional[date] = None) -> int:
    """
    Outstanding follow-ups dated before today were not completed: record the
    system NOT_COMPLETED outcome, which also clears the follow-up.
    """
    today = today or date.today()

    ids = session.exec(
        select(Person.id).where(
            Person.next_followup_date.is_not(None),  # type: ignore[union-attr]
            Person.next_followup_date < today,
        )
    ).all()

    count = 0
    for person_id in ids:
        try:
            person = load_person_for_update(session, person_id)
            # Re-check under the lock; a leader may have just completed it
            if person is None or person.next_followup_date is None or person.next_followup_date >= today:
                session.rollback()
                continue

            was_due = person.next_followup_date
            record_checkin(
                session,
                person,
                Outcome.NOT_COMPLETED,
                notes=f"Scheduled follow-up for {was_due.isoformat()} was not completed.",
                checkin_date=today,
                reason="auto:expired",
                allow_system=True,
            )
            count += 1
        except Exception:
            session.rollback()
            logger.exception("failed to expire follow-up for person=%s", person_id)

    if count:
        logger.info("marked %s expired follow-ups as NOT_COMPLETED", count)
    return count


def _cutoff(today: date, days: int) -> datetime:
    return datetime.combine(today - timedelta(days=days), dtime.min, tzinfo=timezone.utc)


def process_never_contacted(
    session: Session,
    today: Optional[date] = None,
    days: Optional[int] = None,
) -> int:
    """
    Converts still NEW with no check-in at all after `days` become NEVER_CONTACTED.
    New Members are handled by the stage sweeps instead; Members are never flagged.
    """
    today = today or date.today()
    days = settings.never_contacted_days if days is None else days

    has_checkin = exists().where(Checkin.person_id == Person.id)
    people = session.exec(
        select(Person).where(
            Person.kind == EntityKind.CONVERT,
            Person.status == StatusToken.NEW.value,
            Person.created_at < _cutoff(today, days),
            ~has_checkin,
        )
    ).all()

    count = 0
    for person in people:
        try:
            if set_status(session, person, StatusToken.NEVER_CONTACTED, f"auto:no_contact_{days}d"):
                count += 1
        except Exception:
            session.rollback()
            logger.exception("failed to mark person=%s as never contacted", person.id)

    if count:
        logger.info("marked %s converts as NEVER_CONTACTED (%s+ days with no follow-up)", count, days)
    return count


def process_new_member_contact(
    session: Session,
    today: Optional[date] = None,
    days: Optional[int] = None,
) -> int:
    """
    New Members with no check-in `days` after joining move to CONTACT_NEW_MEMBER.
    """
    today = today or date.today()
    days = settings.new_member_contact_days if days is None else days

    has_checkin = exists().where(Checkin.person_id == Person.id)
    people = session.exec(
        select(Person).where(
            Person.kind == EntityKind.NEW_MEMBER,
            or_(
                Person.followup_stage.is_(None),  # type: ignore[union-attr]
                Person.followup_stage.in_(list(UNCONTACTED_STAGES)),  # type: ignore[union-attr]
            ),
            Person.created_at < _cutoff(today, days),
            ~has_checkin,
        )
    ).all()

    count = 0
    for person in people:
        try:
            if set_followup_stage(session, person, FollowupStage.CONTACT_NEW_MEMBER, f"auto:no_contact_{days}d"):
                count += 1
        except Exception:
            session.rollback()
            logger.exception("failed to flag new member person=%s for contact", person.id)

    if count:
        logger.info("marked %s new members as CONTACT_NEW_MEMBER (%s+ days with no follow-up)", count, days)
    return count


def process_new_member_progression(
    session: Session,
    today: Optional[date] = None,
    days: Optional[int] = None,
) -> int:
    """
    `days` after a follow-up round is completed, open the next one:
    FIRST_COMPLETED -> INITIATE_SECOND, SECOND_COMPLETED -> INITIATE_FINAL.
    """
    today = today or date.today()
    days = settings.followup_progression_days if days is None else days
    cutoff = _cutoff(today, days)

    count = 0
    for from_stage, to_stage in AUTO_PROGRESSION.items():
        people = session.exec(
            select(Person).where(
                Person.kind == EntityKind.NEW_MEMBER,
                Person.followup_stage == from_stage,
                Person.followup_stage_changed_at < cutoff,
            )
        ).all()

        for person in people:
            try:
                if set_followup_stage(session, person, to_stage, f"auto:progression_{days}d"):
                    count += 1
            except Exception:
                session.rollback()
                logger.exception("failed to move new member person=%s to %s", person.id, to_stage.value)

    if count:
        logger.info("moved %s new members to their next follow-up round", count)
    return count


def run_once(notifier: Optional[Notifier] = None, today: Optional[date] = None) -> SweepReport:
    notifier = notifier or get_notifier()
    with session_scope() as session:
        report = process_due_reminders(session, notifier, today)
    with session_scope() as session:
        report.followups_expired = process_expired_followups(session, today)
    with session_scope() as session:
        report.never_contacted = process_never_contacted(session, today)
    with session_scope() as session:
        report.new_members_to_contact = process_new_member_contact(session, today)
    with session_scope() as session:
        report.new_members_progressed = process_new_member_progression(session, today)
    return report


def run_forever() -> None:
    """
    Blocking loop for the scheduler process. One failed pass never stops the loop.
    """
    notifier = get_notifier()
    interval = settings.scheduler_interval_s
    logger.info("follow-up scheduler started (interval=%ss, notifier=%s)", interval, type(notifier).__name__)

    while True:
        try:
            report = run_once(notifier)
            logger.info("sweep done: %s", report)
        except Exception:
            logger.exception("sweep pass failed")
        time.sleep(interval)
