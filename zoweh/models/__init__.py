# zoweh/models/__init__.py
# Central import surface for SQLModel table registration.
# Keeping these imports ensures init_db() sees all models and creates tables.

from .ministry import Ministry, Leader, LeaderRole
from .person import Person
from .checkin import Checkin

# Notifications
from .reminder import FollowupReminder, ReminderKind, ReminderStatus, RecipientRole

# Audit
from .audit_log import AuditLog

__all__ = [
    "Ministry",
    "Leader",
    "LeaderRole",
    "Person",
    "Checkin",
    "FollowupReminder",
    "ReminderKind",
    "ReminderStatus",
    "RecipientRole",
    "AuditLog",
]
