from datetime import date, timedelta

import pytest

from zoweh.services import stats as stats_module
from zoweh.services import status_events
from zoweh.services.export import EXPORT_HEADERS, export_people_csv
from zoweh.services.followup_engine import record_checkin
from zoweh.services.member_stages import FollowupStage
from zoweh.services.stats import StatsCache, compute_ministry_stats, stats_cache
from zoweh.services.status_events import StatusChange
from zoweh.services.status_rules import (
    CanonicalStatus,
    EntityKind,
    FollowupSchedule,
    UnknownStatusError,
)


def _change(ministry_id=1, **overrides) -> StatusChange:
    values = dict(
        ministry_id=ministry_id,
        person_id=5,
        kind=EntityKind.CONVERT,
        previous_status=CanonicalStatus.NEW,
        new_status=CanonicalStatus.SCHEDULED,
    )
    values.update(overrides)
    return StatusChange(**values)


# -----------------------------------------------------------------------------
# Observer bus
# -----------------------------------------------------------------------------
class TestStatusEvents:
    def test_subscribe_is_idempotent_and_works_as_decorator(self):
        seen = []

        @status_events.subscribe
        def listener(change):
            seen.append(change.person_id)

        try:
            status_events.subscribe(listener)
            assert status_events.listeners().count(listener) == 1
            status_events.publish(_change())
            assert seen == [5]
        finally:
            status_events.unsubscribe(listener)

        status_events.publish(_change())
        assert seen == [5]

    def test_failing_listener_does_not_stop_others(self, caplog):
        seen = []

        def broken(change):
            raise RuntimeError("boom")

        status_events.subscribe(broken)
        status_events.subscribe(seen.append)
        try:
            before = len(status_events.listeners())
            ok = status_events.publish(_change())
        finally:
            status_events.unsubscribe(broken)
            status_events.unsubscribe(seen.append)

        assert ok == before - 1
        assert len(seen) == 1
        assert "status listener" in caplog.text

    def test_status_changed_flag(self):
        assert _change().status_changed
        assert not _change(new_status=CanonicalStatus.NEW).status_changed

    def test_stats_cache_is_subscribed(self):
        assert stats_cache.on_status_change in status_events.listeners()


# -----------------------------------------------------------------------------
# Stats
# -----------------------------------------------------------------------------
class TestMinistryStats:
    def test_counts_fold_legacy_tokens(self, session, ministry, make_person):
        make_person(EntityKind.CONVERT, status="NEW")
        make_person(EntityKind.CONVERT, status="ACTIVE")
        make_person(EntityKind.CONVERT, status="CONNECTED")
        make_person(EntityKind.NEW_MEMBER, status="INACTIVE")
        make_person(EntityKind.MEMBER, status="IN_PROGRESS", next_followup_date=date.today() + timedelta(days=2))

        stats = compute_ministry_stats(session, ministry.id)

        assert stats.total == 5
        assert stats.by_status == {"NEW": 1, "SCHEDULED": 1, "COMPLETED": 2, "NOT_CONNECTED": 1}
        assert stats.by_kind["CONVERT"]["COMPLETED"] == 2
        assert stats.by_kind["NEW_MEMBER"]["NOT_CONNECTED"] == 1
        assert stats.by_kind["MEMBER"]["SCHEDULED"] == 1
        assert stats.upcoming_followups == 1

    def test_empty_ministry_is_zero_filled(self, session, ministry):
        stats = compute_ministry_stats(session, ministry.id)
        assert stats.total == 0
        assert set(stats.by_kind) == {"CONVERT", "NEW_MEMBER", "MEMBER"}
        assert all(v == 0 for v in stats.by_status.values())

    def test_unknown_token_raises(self, session, ministry, make_person):
        make_person(status="BOGUS")
        with pytest.raises(UnknownStatusError):
            compute_ministry_stats(session, ministry.id)

    def test_new_member_stage_counts(self, session, ministry, make_person):
        make_person(EntityKind.NEW_MEMBER)
        make_person(EntityKind.NEW_MEMBER, followup_stage=FollowupStage.NEW)
        make_person(EntityKind.NEW_MEMBER, followup_stage=FollowupStage.INITIATE_SECOND)
        make_person(EntityKind.CONVERT)

        stats = compute_ministry_stats(session, ministry.id)

        assert set(stats.new_member_stages) == {s.value for s in FollowupStage}
        assert stats.new_member_stages["NEW"] == 2
        assert stats.new_member_stages["INITIATE_SECOND"] == 1
        assert sum(stats.new_member_stages.values()) == 3


class TestStatsCache:
    def test_cached_until_status_change(self, session, ministry, make_person):
        cache = StatsCache()
        person = make_person()

        first = cache.get(session, ministry.id)
        assert cache.get(session, ministry.id) is first
        assert len(cache) == 1

        cache.on_status_change(_change(ministry_id=ministry.id, person_id=person.id))
        assert len(cache) == 0
        assert cache.get(session, ministry.id) is not first

    def test_invalidation_is_per_ministry(self, session, ministry):
        cache = StatsCache()
        cache.get(session, ministry.id)
        cache.get(session, ministry.id + 100)

        cache.invalidate(ministry.id)
        assert len(cache) == 1

    def test_checkin_drops_shared_cache(self, session, ministry, make_person):
        person = make_person()
        before = stats_cache.get(session, ministry.id)
        assert before.by_status["NEW"] == 1

        record_checkin(session, person, "SCHEDULED_VISIT", scheduling=FollowupSchedule(date=date.today()))

        after = stats_cache.get(session, ministry.id)
        assert after is not before
        assert after.by_status["SCHEDULED"] == 1
        assert after.by_status["NEW"] == 0

    @pytest.mark.parametrize("scope", ["ministry", "all"])
    def test_change_during_compute_is_not_cached(self, session, ministry, monkeypatch, scope):
        cache = StatsCache()
        real = stats_module.compute_ministry_stats

        def compute_then_change(*args, **kwargs):
            result = real(*args, **kwargs)
            # a status change lands after the counts were read
            cache.invalidate(ministry.id if scope == "ministry" else None)
            return result

        monkeypatch.setattr(stats_module, "compute_ministry_stats", compute_then_change)

        stale = cache.get(session, ministry.id)
        assert stale.ministry_id == ministry.id
        assert len(cache) == 0

        monkeypatch.setattr(stats_module, "compute_ministry_stats", real)
        assert cache.get(session, ministry.id) is not stale
        assert len(cache) == 1

    def test_other_ministry_change_does_not_block_caching(self, session, ministry, monkeypatch):
        cache = StatsCache()
        real = stats_module.compute_ministry_stats

        def compute_then_change(*args, **kwargs):
            result = real(*args, **kwargs)
            cache.invalidate(ministry.id + 100)
            return result

        monkeypatch.setattr(stats_module, "compute_ministry_stats", compute_then_change)
        cache.get(session, ministry.id)
        assert len(cache) == 1

    def test_previous_days_are_evicted(self, session, ministry):
        cache = StatsCache()
        today = date.today()
        cache.get(session, ministry.id, today=today - timedelta(days=1))
        cache.get(session, ministry.id + 100, today=today - timedelta(days=3))
        assert len(cache) == 2

        cache.get(session, ministry.id, today=today)
        assert len(cache) == 1


# -----------------------------------------------------------------------------
# CSV export
# -----------------------------------------------------------------------------
class TestExport:
    def test_uses_export_labels(self, make_person):
        people = [
            make_person(first_name="Akua", status="CONNECTED"),
            make_person(EntityKind.NEW_MEMBER, first_name="Yaw", status="NOT_COMPLETED", email=None),
        ]
        lines = export_people_csv(people).strip().split("\n")

        assert lines[0] == ",".join(f'"{h}"' for h in EXPORT_HEADERS)
        assert lines[1].startswith('"Akua","Boateng","Convert",')
        assert '"Completed"' in lines[1]
        assert '"New Member"' in lines[2]
        assert '"Not Connected"' in lines[2]

    def test_unknown_token_fails_loudly(self, make_person):
        with pytest.raises(UnknownStatusError):
            export_people_csv([make_person(status="BOGUS")])
