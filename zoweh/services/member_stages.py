from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple, Union

from .status_rules import CanonicalStatus


class FollowupStage(str, Enum):
    """
    Where a New Member is in the three-round follow-up arc
    (first contact, second follow-up, final follow-up).
    """

    NEW = "NEW"
    CONTACT_NEW_MEMBER = "CONTACT_NEW_MEMBER"
    SCHEDULED = "SCHEDULED"
    FIRST_COMPLETED = "FIRST_COMPLETED"
    INITIATE_SECOND = "INITIATE_SECOND"
    SECOND_SCHEDULED = "SECOND_SCHEDULED"
    SECOND_COMPLETED = "SECOND_COMPLETED"
    INITIATE_FINAL = "INITIATE_FINAL"
    FINAL_SCHEDULED = "FINAL_SCHEDULED"
    FINAL_COMPLETED = "FINAL_COMPLETED"


STAGE_LABELS: Dict[FollowupStage, str] = {
    FollowupStage.NEW: "Not Started",
    FollowupStage.CONTACT_NEW_MEMBER: "Needs Contact",
    FollowupStage.SCHEDULED: "1st Scheduled",
    FollowupStage.FIRST_COMPLETED: "1st Completed",
    FollowupStage.INITIATE_SECOND: "Ready for 2nd",
    FollowupStage.SECOND_SCHEDULED: "2nd Scheduled",
    FollowupStage.SECOND_COMPLETED: "2nd Completed",
    FollowupStage.INITIATE_FINAL: "Ready for Final",
    FollowupStage.FINAL_SCHEDULED: "Final Scheduled",
    FollowupStage.FINAL_COMPLETED: "Completed",
}


@dataclass(frozen=True)
class FollowupRound:
    """
    One round of the arc.

    ready: stages from which a check-in belongs to this round
    retry: stage to fall back to when a scheduled visit does not connect
    """

    ready: FrozenSet[FollowupStage]
    retry: FollowupStage
    scheduled: FollowupStage
    completed: FollowupStage


ROUNDS: Tuple[FollowupRound, ...] = (
    FollowupRound(
        ready=frozenset({FollowupStage.NEW, FollowupStage.CONTACT_NEW_MEMBER}),
        retry=FollowupStage.CONTACT_NEW_MEMBER,
        scheduled=FollowupStage.SCHEDULED,
        completed=FollowupStage.FIRST_COMPLETED,
    ),
    FollowupRound(
        ready=frozenset({FollowupStage.FIRST_COMPLETED, FollowupStage.INITIATE_SECOND}),
        retry=FollowupStage.INITIATE_SECOND,
        scheduled=FollowupStage.SECOND_SCHEDULED,
        completed=FollowupStage.SECOND_COMPLETED,
    ),
    FollowupRound(
        ready=frozenset({FollowupStage.SECOND_COMPLETED, FollowupStage.INITIATE_FINAL}),
        retry=FollowupStage.INITIATE_FINAL,
        scheduled=FollowupStage.FINAL_SCHEDULED,
        completed=FollowupStage.FINAL_COMPLETED,
    ),
)

# Time-based moves made by the scheduler after FOLLOWUP_PROGRESSION_DAYS.
AUTO_PROGRESSION: Dict[FollowupStage, FollowupStage] = {
    FollowupStage.FIRST_COMPLETED: FollowupStage.INITIATE_SECOND,
    FollowupStage.SECOND_COMPLETED: FollowupStage.INITIATE_FINAL,
}

# Stages the "no contact yet" sweep may move to CONTACT_NEW_MEMBER.
UNCONTACTED_STAGES: FrozenSet[FollowupStage] = frozenset({FollowupStage.NEW})


def coerce_stage(raw: Union[FollowupStage, str, None]) -> FollowupStage:
    # Rows created before stages existed have no stage yet
    if raw is None:
        return FollowupStage.NEW
    return FollowupStage(raw)


def stage_label(raw: Union[FollowupStage, str, None]) -> str:
    return STAGE_LABELS[coerce_stage(raw)]


def _round_for(stage: FollowupStage) -> Optional[FollowupRound]:
    for rnd in ROUNDS:
        if stage in rnd.ready or stage == rnd.scheduled:
            return rnd
    return None


def stage_after_checkin(
    current: Union[FollowupStage, str, None],
    new_status: CanonicalStatus,
) -> FollowupStage:
    """
    Stage a New Member moves to after a check-in.

    Rules:
    - SCHEDULED status -> the round's *_SCHEDULED stage
    - COMPLETED status -> the round's *_COMPLETED stage
    - NOT_CONNECTED while a visit was scheduled -> back to the round's "ready" stage
    - FINAL_COMPLETED never moves
    """
    stage = coerce_stage(current)
    rnd = _round_for(stage)
    if rnd is None:
        return stage

    if new_status == CanonicalStatus.SCHEDULED:
        return rnd.scheduled

    if new_status == CanonicalStatus.COMPLETED:
        return rnd.completed

    if stage == rnd.scheduled:
        return rnd.retry

    return stage
