from datetime import date, datetime, timedelta, timezone

from sqlmodel import select

from zoweh.models.audit_log import AuditLog
from zoweh.models.checkin import Checkin
from zoweh.models.reminder import FollowupReminder, RecipientRole, ReminderKind, ReminderStatus
from zoweh.services import sweeps
from zoweh.services.followup_engine import record_checkin
from zoweh.services.member_stages import FollowupStage
from zoweh.services.notifications import NotificationError
from zoweh.services.status_rules import CanonicalStatus, EntityKind, FollowupSchedule, Outcome, StatusToken

TODAY = date(2025, 6, 10)


class RecordingNotifier:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def send(self, reminder, person):
        if reminder.recipient_email in self.fail_for:
            raise NotificationError("webhook returned 502")
        self.sent.append((reminder.id, person.id))


def _queue(session, person, checkin_id, **overrides):
    values = dict(
        checkin_id=checkin_id,
        person_id=person.id,
        kind=ReminderKind.DAY_BEFORE,
        recipient_role=RecipientRole.LEADER,
        recipient_email="ama@grace.example",
        send_on=TODAY,
        scheduled_date=TODAY + timedelta(days=1),
    )
    values.update(overrides)
    row = FollowupReminder(**values)
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def _scheduled(session, person, when):
    return record_checkin(session, person, "SCHEDULED_VISIT", scheduling=FollowupSchedule(date=when))


def _days_ago(n: int) -> datetime:
    return datetime.combine(TODAY, datetime.min.time(), tzinfo=timezone.utc) - timedelta(days=n)


# -----------------------------------------------------------------------------
# Reminder delivery
# -----------------------------------------------------------------------------
class TestProcessDueReminders:
    def test_sends_due_and_leaves_future(self, session, make_person):
        person = make_person()
        checkin_id = _scheduled(session, person, TODAY + timedelta(days=5)).checkin.id
        due = _queue(session, person, checkin_id)
        later = _queue(
            session,
            person,
            checkin_id,
            kind=ReminderKind.IMMEDIATE,
            recipient_role=RecipientRole.PERSON,
            send_on=TODAY + timedelta(days=1),
        )

        notifier = RecordingNotifier()
        report = sweeps.process_due_reminders(session, notifier, TODAY)

        assert report.reminders_sent == 1
        assert notifier.sent == [(due.id, person.id)]
        session.refresh(due)
        session.refresh(later)
        assert due.status == ReminderStatus.SENT
        assert due.sent_at is not None
        assert due.attempts == 1
        assert later.status == ReminderStatus.PENDING

    def test_missing_address_is_skipped(self, session, make_person):
        person = make_person()
        checkin_id = _scheduled(session, person, TODAY + timedelta(days=5)).checkin.id
        row = _queue(session, person, checkin_id, recipient_email=None)

        report = sweeps.process_due_reminders(session, RecordingNotifier(), TODAY)

        assert report.reminders_skipped == 1
        session.refresh(row)
        assert row.status == ReminderStatus.SKIPPED

    def test_failure_stays_pending_for_retry(self, session, make_person):
        person = make_person()
        checkin_id = _scheduled(session, person, TODAY + timedelta(days=5)).checkin.id
        row = _queue(session, person, checkin_id)
        notifier = RecordingNotifier(fail_for={"ama@grace.example"})

        report = sweeps.process_due_reminders(session, notifier, TODAY)
        sweeps.process_due_reminders(session, notifier, TODAY)

        assert report.reminders_failed == 1
        session.refresh(row)
        assert row.status == ReminderStatus.PENDING
        assert row.attempts == 2
        assert "502" in row.last_error

    def test_cancelled_reminders_are_not_sent(self, session, make_person):
        person = make_person()
        checkin_id = _scheduled(session, person, TODAY + timedelta(days=5)).checkin.id
        _queue(session, person, checkin_id, status=ReminderStatus.CANCELLED)

        notifier = RecordingNotifier()
        report = sweeps.process_due_reminders(session, notifier, TODAY)
        assert notifier.sent == []
        assert report.reminders_sent == 0


# -----------------------------------------------------------------------------
# Expired follow-ups
# -----------------------------------------------------------------------------
class TestProcessExpiredFollowups:
    def test_past_followup_becomes_not_completed(self, session, make_person):
        person = make_person()
        scheduled = _scheduled(session, person, TODAY - timedelta(days=1))

        assert sweeps.process_expired_followups(session, TODAY) == 1

        session.refresh(person)
        assert person.status == StatusToken.NOT_COMPLETED.value
        assert person.display_status() == CanonicalStatus.NOT_CONNECTED
        assert person.status_changed_reason == "auto:expired"
        assert person.next_followup_date is None

        session.refresh(scheduled.checkin)
        assert scheduled.checkin.closed_at is not None

        auto = session.exec(
            select(Checkin).where(Checkin.person_id == person.id, Checkin.outcome == Outcome.NOT_COMPLETED)
        ).one()
        assert auto.checkin_date == TODAY
        assert scheduled.checkin.closed_by_checkin_id == auto.id

    def test_today_and_future_followups_are_kept(self, session, make_person):
        due_today = make_person(first_name="Abena")
        upcoming = make_person(first_name="Kwesi")
        _scheduled(session, due_today, TODAY)
        _scheduled(session, upcoming, TODAY + timedelta(days=2))

        assert sweeps.process_expired_followups(session, TODAY) == 0
        session.refresh(due_today)
        session.refresh(upcoming)
        assert due_today.display_status() == CanonicalStatus.SCHEDULED
        assert upcoming.display_status() == CanonicalStatus.SCHEDULED

    def test_second_run_is_a_noop(self, session, make_person):
        person = make_person()
        _scheduled(session, person, TODAY - timedelta(days=3))

        assert sweeps.process_expired_followups(session, TODAY) == 1
        assert sweeps.process_expired_followups(session, TODAY) == 0

    def test_missed_new_member_visit_needs_contact_again(self, session, make_person):
        person = make_person(EntityKind.NEW_MEMBER, followup_stage=FollowupStage.FIRST_COMPLETED)
        record_checkin(session, person, "NEEDS_FOLLOWUP", scheduling=FollowupSchedule(date=TODAY - timedelta(days=1)))
        assert person.followup_stage == FollowupStage.SECOND_SCHEDULED

        assert sweeps.process_expired_followups(session, TODAY) == 1

        session.refresh(person)
        assert person.followup_stage == FollowupStage.INITIATE_SECOND


# -----------------------------------------------------------------------------
# Never contacted
# -----------------------------------------------------------------------------
class TestProcessNeverContacted:
    def test_old_new_people_without_checkins(self, session, make_person):
        stale = make_person(first_name="Old", created_at=_days_ago(31))
        fresh = make_person(first_name="Fresh", created_at=_days_ago(5))

        assert sweeps.process_never_contacted(session, TODAY, days=30) == 1

        session.refresh(stale)
        session.refresh(fresh)
        assert stale.status == StatusToken.NEVER_CONTACTED.value
        assert stale.status_changed_reason == "auto:no_contact_30d"
        assert fresh.status == StatusToken.NEW.value

    def test_people_with_any_checkin_are_left_alone(self, session, make_person):
        person = make_person(created_at=_days_ago(60))
        record_checkin(session, person, "NO_RESPONSE")

        assert sweeps.process_never_contacted(session, TODAY, days=30) == 0

    def test_only_new_people_are_considered(self, session, make_person):
        make_person(status="CONNECTED", created_at=_days_ago(90))
        assert sweeps.process_never_contacted(session, TODAY, days=30) == 0

    def test_only_converts_are_flagged(self, session, make_person):
        member = make_person(EntityKind.MEMBER, first_name="Ato", created_at=_days_ago(40))
        new_member = make_person(EntityKind.NEW_MEMBER, first_name="Esi", created_at=_days_ago(40))

        assert sweeps.process_never_contacted(session, TODAY, days=30) == 0

        session.refresh(member)
        session.refresh(new_member)
        assert member.status == StatusToken.NEW.value
        assert new_member.status == StatusToken.NEW.value


# -----------------------------------------------------------------------------
# New Member stages
# -----------------------------------------------------------------------------
class TestProcessNewMemberContact:
    def test_uncontacted_new_members_need_contact(self, session, make_person):
        legacy = make_person(EntityKind.NEW_MEMBER, first_name="Esi", created_at=_days_ago(15))
        staged = make_person(
            EntityKind.NEW_MEMBER,
            first_name="Yaa",
            created_at=_days_ago(20),
            followup_stage=FollowupStage.NEW,
        )
        fresh = make_person(
            EntityKind.NEW_MEMBER,
            first_name="Fresh",
            created_at=_days_ago(3),
            followup_stage=FollowupStage.NEW,
        )

        assert sweeps.process_new_member_contact(session, TODAY, days=14) == 2

        for person in (legacy, staged, fresh):
            session.refresh(person)
        assert legacy.followup_stage == FollowupStage.CONTACT_NEW_MEMBER
        assert staged.followup_stage == FollowupStage.CONTACT_NEW_MEMBER
        assert fresh.followup_stage == FollowupStage.NEW
        # status is untouched; only the stage moves
        assert staged.status == StatusToken.NEW.value

        details = {a.detail for a in session.exec(select(AuditLog).where(AuditLog.action == "STAGE")).all()}
        assert details == {"NEW->CONTACT_NEW_MEMBER (auto:no_contact_14d)"}

    def test_contacted_and_other_kinds_are_left_alone(self, session, make_person):
        contacted = make_person(EntityKind.NEW_MEMBER, created_at=_days_ago(30))
        record_checkin(session, contacted, "NO_RESPONSE")
        convert = make_person(first_name="Kwame", created_at=_days_ago(30))

        assert sweeps.process_new_member_contact(session, TODAY, days=14) == 0

        session.refresh(convert)
        assert convert.followup_stage is None

    def test_second_run_is_a_noop(self, session, make_person):
        make_person(EntityKind.NEW_MEMBER, created_at=_days_ago(15))

        assert sweeps.process_new_member_contact(session, TODAY) == 1
        assert sweeps.process_new_member_contact(session, TODAY) == 0


class TestProcessNewMemberProgression:
    def test_completed_rounds_open_the_next_one(self, session, make_person):
        first = make_person(
            EntityKind.NEW_MEMBER,
            first_name="First",
            followup_stage=FollowupStage.FIRST_COMPLETED,
            followup_stage_changed_at=_days_ago(21),
        )
        second = make_person(
            EntityKind.NEW_MEMBER,
            first_name="Second",
            followup_stage=FollowupStage.SECOND_COMPLETED,
            followup_stage_changed_at=_days_ago(25),
        )
        recent = make_person(
            EntityKind.NEW_MEMBER,
            first_name="Recent",
            followup_stage=FollowupStage.FIRST_COMPLETED,
            followup_stage_changed_at=_days_ago(10),
        )
        done = make_person(
            EntityKind.NEW_MEMBER,
            first_name="Done",
            followup_stage=FollowupStage.FINAL_COMPLETED,
            followup_stage_changed_at=_days_ago(90),
        )

        assert sweeps.process_new_member_progression(session, TODAY, days=20) == 2

        for person in (first, second, recent, done):
            session.refresh(person)
        assert first.followup_stage == FollowupStage.INITIATE_SECOND
        assert second.followup_stage == FollowupStage.INITIATE_FINAL
        assert recent.followup_stage == FollowupStage.FIRST_COMPLETED
        assert done.followup_stage == FollowupStage.FINAL_COMPLETED
        assert first.status_changed_reason is None

    def test_moves_one_round_per_pass(self, session, make_person):
        person = make_person(
            EntityKind.NEW_MEMBER,
            followup_stage=FollowupStage.FIRST_COMPLETED,
            followup_stage_changed_at=_days_ago(60),
        )

        assert sweeps.process_new_member_progression(session, TODAY) == 1
        assert sweeps.process_new_member_progression(session, TODAY) == 0
        session.refresh(person)
        assert person.followup_stage == FollowupStage.INITIATE_SECOND


# -----------------------------------------------------------------------------
# One full pass
# -----------------------------------------------------------------------------
def test_run_once_uses_shared_engine(session, make_person):
    overdue = make_person(first_name="Overdue")
    _scheduled(session, overdue, TODAY - timedelta(days=2))
    make_person(
        first_name="Forgotten",
        created_at=_days_ago(45),
    )

    report = sweeps.run_once(RecordingNotifier(), TODAY)

    assert report.followups_expired == 1
    assert report.never_contacted == 1


def test_run_once_moves_new_member_stages(session, make_person):
    uncontacted = make_person(EntityKind.NEW_MEMBER, first_name="Esi", created_at=_days_ago(15))
    ready = make_person(
        EntityKind.NEW_MEMBER,
        first_name="Yaw",
        followup_stage=FollowupStage.SECOND_COMPLETED,
        followup_stage_changed_at=_days_ago(21),
    )

    report = sweeps.run_once(RecordingNotifier(), TODAY)

    assert report.never_contacted == 0
    assert report.new_members_to_contact == 1
    assert report.new_members_progressed == 1
    session.refresh(uncontacted)
    session.refresh(ready)
    assert uncontacted.followup_stage == FollowupStage.CONTACT_NEW_MEMBER
    assert ready.followup_stage == FollowupStage.INITIATE_FINAL
