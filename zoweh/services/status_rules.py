from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple, Union


class EntityKind(str, Enum):
    """
    The three kinds of Trackable Person. A guest is recorded as NEW_MEMBER.
    """

    CONVERT = "CONVERT"
    NEW_MEMBER = "NEW_MEMBER"
    MEMBER = "MEMBER"


class CanonicalStatus(str, Enum):
    """
    Coarse lifecycle states used by dashboards, filters and the API
    `display_status` field.
    """

    NEW = "NEW"
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    NOT_CONNECTED = "NOT_CONNECTED"


class StatusToken(str, Enum):
    """
    Every status value that may be found in the `people.status` column.

    The check-in flow only ever writes NEW / SCHEDULED / CONNECTED / NOT_COMPLETED
    (and the sweep writes NEVER_CONTACTED). The rest are legacy values from
    earlier data that still have to normalize onto the canonical four.
    """

    # canonical
    NEW = "NEW"
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    NOT_CONNECTED = "NOT_CONNECTED"

    # persisted / legacy
    CONNECTED = "CONNECTED"
    NOT_COMPLETED = "NOT_COMPLETED"
    ACTIVE = "ACTIVE"
    IN_PROGRESS = "IN_PROGRESS"
    NO_RESPONSE = "NO_RESPONSE"
    NEEDS_PRAYER = "NEEDS_PRAYER"
    REFERRED = "REFERRED"
    NEVER_CONTACTED = "NEVER_CONTACTED"
    INACTIVE = "INACTIVE"


class Outcome(str, Enum):
    """
    Result a leader records for one follow-up contact attempt.

    NOT_COMPLETED is system-only: it is written by the expiry sweep and is
    never accepted from a client.
    """

    CONNECTED = "CONNECTED"
    NO_RESPONSE = "NO_RESPONSE"
    NEEDS_FOLLOWUP = "NEEDS_FOLLOWUP"
    NEEDS_PRAYER = "NEEDS_PRAYER"
    REFERRED = "REFERRED"
    SCHEDULED_VISIT = "SCHEDULED_VISIT"
    OTHER = "OTHER"
    NOT_COMPLETED = "NOT_COMPLETED"


# -------------------------
# Errors
# -------------------------

class StatusRuleError(ValueError):
    """Base class for status/outcome rule violations."""


class UnknownStatusError(StatusRuleError):
    """
    A status token is missing from a lookup table.

    This is a data-integrity problem (bad import, missed migration), not a
    user error. Callers should log it loudly and never substitute a default.
    """

    def __init__(self, token: object, table: str) -> None:
        self.token = token
        self.table = table
        super().__init__(f"Unknown status token {token!r} for {table} table")


class InvalidOutcomeForEntityError(StatusRuleError):
    """
    An outcome outside the entity kind's vocabulary was submitted.
    Maps to a 400 at the HTTP boundary.
    """

    def __init__(self, kind: "EntityKind", outcome: object, allowed: FrozenSet["Outcome"]) -> None:
        self.kind = kind
        self.outcome = outcome
        self.allowed = sorted(o.value for o in allowed)
        super().__init__(
            f"Outcome {outcome!r} is not valid for {kind.value}; "
            f"expected one of: {', '.join(self.allowed)}"
        )


# -------------------------
# Lookup tables (explicit, total over StatusToken)
# -------------------------

DISPLAY_STATUS: Dict[StatusToken, CanonicalStatus] = {
    StatusToken.NEW: CanonicalStatus.NEW,
    StatusToken.SCHEDULED: CanonicalStatus.SCHEDULED,
    StatusToken.COMPLETED: CanonicalStatus.COMPLETED,
    StatusToken.NOT_CONNECTED: CanonicalStatus.NOT_CONNECTED,
    StatusToken.CONNECTED: CanonicalStatus.COMPLETED,
    StatusToken.ACTIVE: CanonicalStatus.COMPLETED,
    StatusToken.IN_PROGRESS: CanonicalStatus.SCHEDULED,
    StatusToken.NO_RESPONSE: CanonicalStatus.NOT_CONNECTED,
    StatusToken.NEEDS_PRAYER: CanonicalStatus.NOT_CONNECTED,
    StatusToken.REFERRED: CanonicalStatus.NOT_CONNECTED,
    StatusToken.NOT_COMPLETED: CanonicalStatus.NOT_CONNECTED,
    StatusToken.NEVER_CONTACTED: CanonicalStatus.NOT_CONNECTED,
    StatusToken.INACTIVE: CanonicalStatus.NOT_CONNECTED,
}

# Spreadsheet/report copy. Allowed to differ from UI copy.
EXPORT_LABELS: Dict[StatusToken, str] = {
    StatusToken.NEW: "New",
    StatusToken.SCHEDULED: "Scheduled",
    StatusToken.COMPLETED: "Completed",
    StatusToken.NOT_CONNECTED: "Not Connected",
    StatusToken.CONNECTED: "Completed",
    StatusToken.NOT_COMPLETED: "Not Connected",
    StatusToken.ACTIVE: "Completed",
    StatusToken.IN_PROGRESS: "Scheduled",
    StatusToken.NO_RESPONSE: "Not Connected",
    StatusToken.NEEDS_PRAYER: "Not Connected",
    StatusToken.REFERRED: "Not Connected",
    StatusToken.NEVER_CONTACTED: "Not Connected",
    StatusToken.INACTIVE: "Not Connected",
}

_MUTED = "bg-muted text-muted-foreground border-muted"
_PRIMARY = "bg-primary/10 text-primary border-primary/20"
_SUCCESS = "bg-success/10 text-success border-success/20"
_CORAL = "bg-coral/10 text-coral border-coral/20"

STATUS_COLORS: Dict[StatusToken, str] = {
    StatusToken.NEW: _MUTED,
    StatusToken.SCHEDULED: _PRIMARY,
    StatusToken.COMPLETED: _SUCCESS,
    StatusToken.NOT_CONNECTED: _CORAL,
    StatusToken.CONNECTED: _SUCCESS,
    StatusToken.NOT_COMPLETED: _CORAL,
    StatusToken.ACTIVE: _SUCCESS,
    StatusToken.IN_PROGRESS: _PRIMARY,
    StatusToken.NO_RESPONSE: _CORAL,
    StatusToken.NEEDS_PRAYER: _CORAL,
    StatusToken.REFERRED: _CORAL,
    StatusToken.NEVER_CONTACTED: _CORAL,
    StatusToken.INACTIVE: _MUTED,
}

# Canonical filter value -> token the check-in flow writes for it.
CANONICAL_TO_PERSISTED: Dict[CanonicalStatus, StatusToken] = {
    CanonicalStatus.NEW: StatusToken.NEW,
    CanonicalStatus.SCHEDULED: StatusToken.SCHEDULED,
    CanonicalStatus.COMPLETED: StatusToken.CONNECTED,
    CanonicalStatus.NOT_CONNECTED: StatusToken.NOT_COMPLETED,
}

# NOTE: NEEDS_PRAYER / REFERRED / OTHER all collapse into NOT_COMPLETED.
# The distinct leader intent survives on the check-in row (outcome), not on the person.
OUTCOME_TO_STATUS: Dict[Outcome, StatusToken] = {
    Outcome.CONNECTED: StatusToken.CONNECTED,
    Outcome.NO_RESPONSE: StatusToken.NOT_COMPLETED,
    Outcome.NEEDS_FOLLOWUP: StatusToken.SCHEDULED,
    Outcome.NEEDS_PRAYER: StatusToken.NOT_COMPLETED,
    Outcome.REFERRED: StatusToken.NOT_COMPLETED,
    Outcome.SCHEDULED_VISIT: StatusToken.SCHEDULED,
    Outcome.OTHER: StatusToken.NOT_COMPLETED,
    Outcome.NOT_COMPLETED: StatusToken.NOT_COMPLETED,
}

OUTCOME_VOCABULARY: Dict[EntityKind, FrozenSet[Outcome]] = {
    EntityKind.CONVERT: frozenset(
        {
            Outcome.CONNECTED,
            Outcome.NO_RESPONSE,
            Outcome.NEEDS_PRAYER,
            Outcome.SCHEDULED_VISIT,
            Outcome.REFERRED,
            Outcome.OTHER,
        }
    ),
    EntityKind.NEW_MEMBER: frozenset(
        {
            Outcome.CONNECTED,
            Outcome.NO_RESPONSE,
            Outcome.NEEDS_FOLLOWUP,
            Outcome.SCHEDULED_VISIT,
        }
    ),
    EntityKind.MEMBER: frozenset(
        {
            Outcome.CONNECTED,
            Outcome.NO_RESPONSE,
        }
    ),
}

SYSTEM_OUTCOMES: FrozenSet[Outcome] = frozenset({Outcome.NOT_COMPLETED})

# Outcome recorded by the "schedule follow-up" action when the client omits one.
SCHEDULING_OUTCOME: Dict[EntityKind, Outcome] = {
    EntityKind.CONVERT: Outcome.SCHEDULED_VISIT,
    EntityKind.NEW_MEMBER: Outcome.NEEDS_FOLLOWUP,
    EntityKind.MEMBER: Outcome.CONNECTED,
}


# -------------------------
# Status normalizer
# -------------------------

RawStatus = Union[StatusToken, CanonicalStatus, str]


def _coerce_token(raw: object, table: str) -> StatusToken:
    if isinstance(raw, StatusToken):
        return raw
    if isinstance(raw, CanonicalStatus):
        return StatusToken(raw.value)
    if isinstance(raw, str):
        try:
            return StatusToken(raw.strip().upper())
        except ValueError:
            raise UnknownStatusError(raw, table) from None
    raise UnknownStatusError(raw, table)


def to_canonical_status(raw: RawStatus) -> CanonicalStatus:
    token = _coerce_token(raw, "display")
    try:
        return DISPLAY_STATUS[token]
    except KeyError:
        raise UnknownStatusError(raw, "display") from None


def to_export_label(raw: RawStatus) -> str:
    token = _coerce_token(raw, "export")
    try:
        return EXPORT_LABELS[token]
    except KeyError:
        raise UnknownStatusError(raw, "export") from None


def status_color_class(raw: RawStatus) -> str:
    token = _coerce_token(raw, "color")
    try:
        return STATUS_COLORS[token]
    except KeyError:
        raise UnknownStatusError(raw, "color") from None


def to_persisted_status(canonical: Union[CanonicalStatus, str]) -> StatusToken:
    """
    Canonical filter value -> the token the check-in flow stores for it.
    """
    try:
        c = CanonicalStatus(canonical.strip().upper() if isinstance(canonical, str) else canonical)
    except ValueError:
        raise UnknownStatusError(canonical, "canonical") from None
    return CANONICAL_TO_PERSISTED[c]


def persisted_tokens_for(canonical: Union[CanonicalStatus, str]) -> FrozenSet[StatusToken]:
    """
    All tokens (current and legacy) that display as `canonical`.
    List filters use this so legacy rows are matched as well.
    """
    target = to_canonical_status(to_persisted_status(canonical))
    return frozenset(t for t, c in DISPLAY_STATUS.items() if c == target)


# -------------------------
# Outcome -> status transition
# -------------------------

@dataclass(frozen=True)
class FollowupSchedule:
    """
    Next-appointment data supplied with a check-in.
    `time` is a free-form "HH:MM" string as entered by the leader.
    """

    date: Optional[date] = None
    time: Optional[str] = None
    video_link: Optional[str] = None


@dataclass(frozen=True)
class TransitionResult:
    """
    Pure result of applying an outcome. Persisting it is the caller's job.
    """

    kind: EntityKind
    outcome: Outcome
    new_status: StatusToken
    display_status: CanonicalStatus
    scheduled_followup: Optional[FollowupSchedule] = None

    @property
    def clears_followup(self) -> bool:
        return self.scheduled_followup is None


def outcome_vocabulary(kind: Union[EntityKind, str]) -> FrozenSet[Outcome]:
    return OUTCOME_VOCABULARY[EntityKind(kind)]


def apply_outcome(
    kind: Union[EntityKind, str],
    outcome: Union[Outcome, str],
    scheduling: Optional[FollowupSchedule] = None,
    *,
    allow_system: bool = False,
) -> TransitionResult:
    """
    Decide the new persisted status (and outstanding follow-up) for a check-in.

    Rules:
    - outcome must be in the kind's vocabulary (system outcomes only with allow_system=True)
    - an explicit next-appointment date forces SCHEDULED, whatever the outcome
    - without a date, no follow-up is outstanding afterwards
    """
    k = EntityKind(kind)
    allowed = OUTCOME_VOCABULARY[k]
    if allow_system:
        allowed = allowed | SYSTEM_OUTCOMES

    if isinstance(outcome, Outcome):
        o = outcome
    else:
        try:
            o = Outcome(str(outcome).strip().upper())
        except ValueError:
            raise InvalidOutcomeForEntityError(k, outcome, allowed) from None

    if o not in allowed:
        raise InvalidOutcomeForEntityError(k, outcome, allowed)

    new_status = OUTCOME_TO_STATUS[o]
    scheduled: Optional[FollowupSchedule] = None

    if scheduling is not None and scheduling.date is not None:
        new_status = StatusToken.SCHEDULED
        scheduled = scheduling

    return TransitionResult(
        kind=k,
        outcome=o,
        new_status=new_status,
        display_status=to_canonical_status(new_status),
        scheduled_followup=scheduled,
    )


def can_transition(current: RawStatus, new: RawStatus) -> Tuple[bool, str]:
    """
    Status-level guard.

    NEW is only ever an initial state; from anywhere a check-in may move to
    SCHEDULED, COMPLETED or NOT_CONNECTED. Nothing is terminal.
    """
    cur = to_canonical_status(current)
    nxt = to_canonical_status(new)

    if nxt == CanonicalStatus.NEW and cur != CanonicalStatus.NEW:
        return False, f"cannot_return_to_new:{cur.value}"

    if cur == nxt:
        return True, "noop"

    return True, "ok"
