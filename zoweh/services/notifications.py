from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Protocol

import httpx
from sqlmodel import Session, select

from ..config import settings
from ..models.checkin import Checkin
from ..models.ministry import Leader, LeaderRole
from ..models.person import Person
from ..models.reminder import (
    FollowupReminder,
    RecipientRole,
    ReminderKind,
    ReminderStatus,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationRequest:
    """
    What the notification collaborator receives: who, for which follow-up, and when to send.
    """

    person_id: int
    checkin_id: int
    scheduled_date: date
    recipient_role: RecipientRole
    kind: ReminderKind
    send_on: date
    scheduled_time: Optional[str] = None
    recipient_email: Optional[str] = None
    video_link: Optional[str] = None


# -----------------------------
# Deciding what to queue
# -----------------------------

def resolve_leader(session: Session, person: Person, leader_id: Optional[int] = None) -> Optional[Leader]:
    """
    Who gets the day-before reminder:
    1) the acting leader, 2) whoever entered the person, 3) the ministry's first admin.
    """
    for candidate in (leader_id, person.created_by_leader_id):
        if candidate is None:
            continue
        leader = session.get(Leader, candidate)
        if leader is not None and leader.ministry_id == person.ministry_id:
            return leader

    return session.exec(
        select(Leader)
        .where(Leader.ministry_id == person.ministry_id, Leader.role == LeaderRole.ADMIN)
        .order_by(Leader.id)
    ).first()


def build_followup_notices(
    person: Person,
    checkin: Checkin,
    leader: Optional[Leader],
    *,
    today: Optional[date] = None,
    lead_days: Optional[int] = None,
) -> List[NotificationRequest]:
    """
    Notices implied by a check-in that scheduled a follow-up:
    - LEADER reminder `lead_days` before the date (never earlier than today)
    - PERSON notice right away, only if the person has an email

    Returns [] when the check-in did not schedule anything.
    """
    if checkin.next_followup_date is None:
        return []

    today = today or date.today()
    lead = settings.reminder_lead_days if lead_days is None else lead_days
    remind_on = max(checkin.next_followup_date - timedelta(days=lead), today)

    common: Dict[str, Any] = {
        "person_id": person.id,
        "checkin_id": checkin.id,
        "scheduled_date": checkin.next_followup_date,
        "scheduled_time": checkin.next_followup_time,
        "video_link": checkin.video_link,
    }

    notices = [
        NotificationRequest(
            recipient_role=RecipientRole.LEADER,
            kind=ReminderKind.DAY_BEFORE,
            send_on=remind_on,
            recipient_email=leader.email if leader else None,
            **common,
        )
    ]

    if person.email:
        notices.append(
            NotificationRequest(
                recipient_role=RecipientRole.PERSON,
                kind=ReminderKind.IMMEDIATE,
                send_on=today,
                recipient_email=person.email,
                **common,
            )
        )

    return notices


def queue_notices(session: Session, requests: List[NotificationRequest]) -> List[FollowupReminder]:
    """
    Persist reminders. Already-queued (checkin, kind, role) combinations are
    returned as-is instead of duplicated. Commits.
    """
    queued: List[FollowupReminder] = []
    for req in requests:
        existing = session.exec(
            select(FollowupReminder).where(
                FollowupReminder.checkin_id == req.checkin_id,
                FollowupReminder.kind == req.kind,
                FollowupReminder.recipient_role == req.recipient_role,
            )
        ).first()
        if existing:
            queued.append(existing)
            continue

        row = FollowupReminder(
            checkin_id=req.checkin_id,
            person_id=req.person_id,
            kind=req.kind,
            recipient_role=req.recipient_role,
            recipient_email=req.recipient_email,
            send_on=req.send_on,
            scheduled_date=req.scheduled_date,
            scheduled_time=req.scheduled_time,
            video_link=req.video_link,
        )
        session.add(row)
        queued.append(row)

    session.commit()
    for row in queued:
        session.refresh(row)
    return queued


def queue_followup_notices(
    session: Session,
    person: Person,
    checkin: Checkin,
    *,
    leader_id: Optional[int] = None,
) -> List[FollowupReminder]:
    """
    Convenience used by the check-in routes after record_checkin().
    """
    if checkin.next_followup_date is None:
        return []
    leader = resolve_leader(session, person, leader_id)
    return queue_notices(session, build_followup_notices(person, checkin, leader))


def cancel_pending_for_checkin(session: Session, checkin_id: int) -> int:
    """
    Cancel reminders for a follow-up that was closed. Does not commit.
    """
    rows = session.exec(
        select(FollowupReminder).where(
            FollowupReminder.checkin_id == checkin_id,
            FollowupReminder.status == ReminderStatus.PENDING,
        )
    ).all()
    for row in rows:
        row.status = ReminderStatus.CANCELLED
        session.add(row)
    return len(rows)


# -----------------------------
# Delivery backends
# -----------------------------

class NotificationError(RuntimeError):
    pass


class Notifier(Protocol):
    def send(self, reminder: FollowupReminder, person: Person) -> None:
        ...


def reminder_payload(reminder: FollowupReminder, person: Person) -> Dict[str, Any]:
    req = NotificationRequest(
        person_id=reminder.person_id,
        checkin_id=reminder.checkin_id,
        scheduled_date=reminder.scheduled_date,
        recipient_role=reminder.recipient_role,
        kind=reminder.kind,
        send_on=reminder.send_on,
        scheduled_time=reminder.scheduled_time,
        recipient_email=reminder.recipient_email,
        video_link=reminder.video_link,
    )
    payload = asdict(req)
    for key in ("scheduled_date", "send_on"):
        payload[key] = payload[key].isoformat()
    payload["recipient_role"] = req.recipient_role.value
    payload["kind"] = req.kind.value
    payload["reminder_id"] = reminder.id
    payload["person_name"] = person.full_name
    return payload


class LogNotifier:
    """
    Default backend: writes the reminder to the log. Useful locally and as a
    safe fallback when no webhook is configured.
    """

    def send(self, reminder: FollowupReminder, person: Person) -> None:
        logger.info(
            "reminder %s -> %s <%s> for %s on %s %s",
            reminder.kind.value,
            reminder.recipient_role.value,
            reminder.recipient_email,
            person.full_name,
            reminder.scheduled_date.isoformat(),
            reminder.scheduled_time or "",
        )


class WebhookNotifier:
    """
    Posts each reminder as JSON to an external delivery service (email/SMS).
    Any non-2xx or network failure raises NotificationError so the sweep can retry.
    """

    def __init__(self, url: str, *, timeout_s: float = 10.0, client: Optional[httpx.Client] = None) -> None:
        self.url = url
        self._client = client or httpx.Client(
            timeout=float(timeout_s),
            headers={"User-Agent": f"{settings.app_name}/{settings.app_version}"},
        )

    def send(self, reminder: FollowupReminder, person: Person) -> None:
        try:
            r = self._client.post(self.url, json=reminder_payload(reminder, person))
        except httpx.TimeoutException as e:
            raise NotificationError(f"timeout posting reminder {reminder.id}") from e
        except httpx.RequestError as e:
            raise NotificationError(f"network error posting reminder {reminder.id}: {e}") from e

        if r.status_code >= 300:
            raise NotificationError(f"webhook returned {r.status_code} for reminder {reminder.id}")

    def close(self) -> None:
        self._client.close()


def get_notifier() -> Notifier:
    if settings.notify_webhook_url:
        return WebhookNotifier(settings.notify_webhook_url, timeout_s=settings.notify_timeout_s)
    return LogNotifier()
