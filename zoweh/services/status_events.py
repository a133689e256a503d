from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional

from .status_rules import CanonicalStatus, EntityKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusChange:
    """
    Published after a person's status or outstanding follow-up was written.

    Views derived from people rows (dashboard stats, follow-up lists, exports)
    subscribe to this instead of being invalidated by name.
    """

    ministry_id: int
    person_id: int
    kind: EntityKind
    previous_status: Optional[CanonicalStatus]
    new_status: CanonicalStatus
    next_followup_date: Optional[date] = None
    reason: Optional[str] = None
    followup_stage: Optional[str] = None

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.new_status


StatusListener = Callable[[StatusChange], None]

_listeners: List[StatusListener] = []


def subscribe(listener: StatusListener) -> StatusListener:
    """
    Register a listener. Returns it, so this also works as a decorator.
    Subscribing the same callable twice is a no-op.
    """
    if listener not in _listeners:
        _listeners.append(listener)
    return listener


def unsubscribe(listener: StatusListener) -> None:
    if listener in _listeners:
        _listeners.remove(listener)


def listeners() -> List[StatusListener]:
    return list(_listeners)


def publish(change: StatusChange) -> int:
    """
    Notify every listener. Called after commit, so a failing listener is
    logged and skipped rather than undoing the write.

    Returns the number of listeners that ran without error.
    """
    ok = 0
    for listener in list(_listeners):
        try:
            listener(change)
            ok += 1
        except Exception:
            logger.exception(
                "status listener %r failed for person=%s",
                listener,
                change.person_id,
            )
    return ok
