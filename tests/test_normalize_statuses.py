from sqlmodel import select

from zoweh.models.audit_log import AuditLog
from zoweh.scripts.normalize_statuses import audit, normalize_legacy


def test_audit_buckets(session, make_person):
    make_person(status="NEW")
    make_person(status="CONNECTED")
    make_person(status="ACTIVE")
    make_person(status="ACTIVE")
    make_person(status="BOGUS")

    report = audit(session)

    assert report["current"] == {"NEW": 1, "CONNECTED": 1}
    assert report["legacy"] == {"ACTIVE": 2}
    assert report["unknown"] == {"BOGUS": 1}


def test_normalize_rewrites_legacy_only(session, make_person):
    active = make_person(status="ACTIVE")
    inactive = make_person(status="INACTIVE")
    in_progress = make_person(status="IN_PROGRESS")
    completed = make_person(status="COMPLETED")
    bogus = make_person(status="BOGUS")

    rewritten = normalize_legacy(session)

    assert rewritten == {"ACTIVE": 1, "INACTIVE": 1, "IN_PROGRESS": 1, "COMPLETED": 1}
    assert active.status == "CONNECTED"
    assert inactive.status == "NOT_COMPLETED"
    assert in_progress.status == "SCHEDULED"
    assert completed.status == "CONNECTED"
    assert bogus.status == "BOGUS"
    assert active.status_changed_reason == "backfill:normalize:ACTIVE"

    assert len(session.exec(select(AuditLog).where(AuditLog.action == "NORMALIZE")).all()) == 4

    # second pass finds nothing left to do
    assert normalize_legacy(session) == {}
