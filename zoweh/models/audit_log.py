from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field

from .person import utcnow


class AuditLog(SQLModel, table=True):
    """
    Append-only record of writes (who did what to which entity).
    actor_leader_id is None for public submissions and scheduler sweeps.
    """

    __tablename__ = "audit_log"

    id: Optional[int] = Field(default=None, primary_key=True)

    actor_leader_id: Optional[int] = Field(default=None, foreign_key="leaders.id", index=True)
    action: str = Field(index=True)  # CREATE / UPDATE / ARCHIVE / CHECKIN / COMPLETE / EXPIRE
    entity_type: str = Field(index=True)  # MINISTRY / PERSON / CHECKIN
    entity_id: Optional[int] = Field(default=None, index=True)
    detail: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow, index=True)
