from __future__ import annotations

import argparse
from typing import Dict, List, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from zoweh.database import get_session, init_db
from zoweh.models.audit_log import AuditLog
from zoweh.models.person import Person, utcnow
from zoweh.services.status_rules import (
    StatusToken,
    UnknownStatusError,
    to_canonical_status,
    to_persisted_status,
)


def _status_counts(session: Session) -> List[Tuple[str, int]]:
    rows = session.exec(select(Person.status, func.count(Person.id)).group_by(Person.status)).all()
    return [(str(status), int(count)) for status, count in rows]


def audit(session: Session) -> Dict[str, Dict[str, int]]:
    """
    Classify stored status tokens:
    - current: tokens the check-in flow writes today
    - legacy: known tokens that still normalize, but predate the flow
    - unknown: tokens with no mapping (data-integrity problem)
    """
    current = {
        StatusToken.NEW.value,
        StatusToken.SCHEDULED.value,
        StatusToken.CONNECTED.value,
        StatusToken.NOT_COMPLETED.value,
        StatusToken.NEVER_CONTACTED.value,
    }
    report: Dict[str, Dict[str, int]] = {"current": {}, "legacy": {}, "unknown": {}}

    for status, count in _status_counts(session):
        try:
            to_canonical_status(status)
        except UnknownStatusError:
            report["unknown"][status] = count
            continue
        bucket = "current" if status in current else "legacy"
        report[bucket][status] = count

    return report


def normalize_legacy(session: Session) -> Dict[str, int]:
    """
    Rewrite legacy tokens to the token the check-in flow would store for the same
    canonical status (e.g. ACTIVE -> CONNECTED, INACTIVE -> NOT_COMPLETED).
    Unknown tokens are left untouched and reported by audit().
    """
    report = audit(session)
    rewritten: Dict[str, int] = {}

    for legacy in report["legacy"]:
        target = to_persisted_status(to_canonical_status(legacy)).value
        if target == legacy:
            continue

        people = session.exec(select(Person).where(Person.status == legacy)).all()
        for p in people:
            p.status = target
            p.status_changed_at = utcnow()
            p.status_changed_reason = f"backfill:normalize:{legacy}"
            session.add(p)
        session.add(
            AuditLog(
                action="NORMALIZE",
                entity_type="PERSON",
                detail=f"{legacy}->{target} ({len(people)})",
            )
        )
        rewritten[legacy] = len(people)

    session.commit()
    return rewritten


def run() -> None:
    """
    Run with:
      python -m zoweh.scripts.normalize_statuses            (audit only)
      python -m zoweh.scripts.normalize_statuses --apply    (rewrite legacy tokens)
    """
    parser = argparse.ArgumentParser(description="Audit / normalize stored person statuses.")
    parser.add_argument("--apply", action="store_true", help="rewrite legacy tokens")
    args = parser.parse_args()

    init_db()
    with get_session() as session:
        report = audit(session)
        print("Status audit:", report)

        if report["unknown"]:
            print("❌ Unknown status tokens found; fix these rows by hand:", report["unknown"])

        if args.apply:
            rewritten = normalize_legacy(session)
            print("✅ normalize_statuses complete")
            print("Rewritten rows:", rewritten)


if __name__ == "__main__":
    run()
