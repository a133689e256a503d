from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from ..models.person import Person
from . import status_events
from .member_stages import FollowupStage, coerce_stage
from .status_rules import CanonicalStatus, EntityKind, to_canonical_status

logger = logging.getLogger(__name__)


@dataclass
class MinistryStats:
    """
    Dashboard counts for one ministry.

    by_kind[kind][canonical_status] -> count. Every kind and status is present (zero-filled).
    new_member_stages[stage] -> count of New Members at each follow-up stage.
    """

    ministry_id: int
    total: int = 0
    by_kind: Dict[str, Dict[str, int]] = field(default_factory=dict)
    by_status: Dict[str, int] = field(default_factory=dict)
    upcoming_followups: int = 0
    new_member_stages: Dict[str, int] = field(default_factory=dict)


def _empty_counts() -> Dict[str, int]:
    return {s.value: 0 for s in CanonicalStatus}


def compute_ministry_stats(session: Session, ministry_id: int, today: Optional[date] = None, window_days: int = 7) -> MinistryStats:
    """
    Group people by (kind, stored status) in SQL, then fold stored tokens onto
    canonical statuses. Unknown stored tokens raise UnknownStatusError.
    """
    today = today or date.today()
    stats = MinistryStats(
        ministry_id=ministry_id,
        by_kind={k.value: _empty_counts() for k in EntityKind},
        by_status=_empty_counts(),
        new_member_stages={s.value: 0 for s in FollowupStage},
    )

    rows = session.exec(
        select(Person.kind, Person.status, func.count(Person.id))
        .where(Person.ministry_id == ministry_id)
        .group_by(Person.kind, Person.status)
    ).all()

    for kind, status, count in rows:
        canonical = to_canonical_status(status).value
        kind_key = EntityKind(kind).value
        stats.by_kind[kind_key][canonical] += int(count)
        stats.by_status[canonical] += int(count)
        stats.total += int(count)

    stage_rows = session.exec(
        select(Person.followup_stage, func.count(Person.id))
        .where(Person.ministry_id == ministry_id, Person.kind == EntityKind.NEW_MEMBER)
        .group_by(Person.followup_stage)
    ).all()
    for stage, count in stage_rows:
        stats.new_member_stages[coerce_stage(stage).value] += int(count)

    stats.upcoming_followups = int(
        session.exec(
            select(func.count(Person.id)).where(
                Person.ministry_id == ministry_id,
                Person.next_followup_date >= today,
                Person.next_followup_date <= today + timedelta(days=window_days),
            )
        ).one()
    )
    return stats


class StatsCache:
    """
    Per-ministry cache of MinistryStats, dropped whenever a StatusChange for that
    ministry is published. Keyed by (ministry_id, date) so the upcoming window rolls daily.

    Each invalidation bumps a generation counter. A result computed while an
    invalidation happened is returned but not stored.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[int, date], MinistryStats] = {}
        self._generations: Dict[int, int] = {}
        self._epoch = 0

    def _generation(self, ministry_id: int) -> Tuple[int, int]:
        return self._epoch, self._generations.get(ministry_id, 0)

    def get(self, session: Session, ministry_id: int, today: Optional[date] = None) -> MinistryStats:
        key = (ministry_id, today or date.today())
        with self._lock:
            for stale in [k for k in self._entries if k[1] < key[1]]:
                del self._entries[stale]
            hit = self._entries.get(key)
            generation = self._generation(ministry_id)
        if hit is not None:
            return hit

        stats = compute_ministry_stats(session, ministry_id, today=key[1])
        with self._lock:
            if self._generation(ministry_id) == generation:
                self._entries[key] = stats
            else:
                logger.debug("stats for ministry=%s changed while computing; not cached", ministry_id)
        return stats

    def invalidate(self, ministry_id: Optional[int] = None) -> None:
        with self._lock:
            if ministry_id is None:
                self._epoch += 1
                self._entries.clear()
                return
            self._generations[ministry_id] = self._generations.get(ministry_id, 0) + 1
            for key in [k for k in self._entries if k[0] == ministry_id]:
                del self._entries[key]

    def on_status_change(self, change: status_events.StatusChange) -> None:
        self.invalidate(change.ministry_id)

    def __len__(self) -> int:
        return len(self._entries)


stats_cache = StatsCache()
status_events.subscribe(stats_cache.on_status_change)
