from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field

from .person import utcnow


class LeaderRole(str, Enum):
    """
    Dashboard role within a ministry.
    """

    ADMIN = "ADMIN"
    LEADER = "LEADER"


class Ministry(SQLModel, table=True):
    """
    A church / ministry (the tenant).

    Notes:
    - public_token identifies the ministry on the public registration form.
    - archived replaces deletion; archived ministries reject public submissions.
    """

    __tablename__ = "ministries"

    id: Optional[int] = Field(default=None, primary_key=True)

    name: str
    location: Optional[str] = Field(default=None)
    public_token: str = Field(index=True, unique=True)

    archived: bool = Field(default=False, index=True)
    archived_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow, index=True)


class Leader(SQLModel, table=True):
    """
    A ministry admin or leader. Receives day-before follow-up reminders.
    """

    __tablename__ = "leaders"

    id: Optional[int] = Field(default=None, primary_key=True)

    ministry_id: int = Field(foreign_key="ministries.id", index=True)
    full_name: str
    email: str = Field(index=True)
    role: LeaderRole = Field(default=LeaderRole.LEADER, index=True)

    created_at: datetime = Field(default_factory=utcnow, index=True)
