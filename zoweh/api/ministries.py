from __future__ import annotations

import secrets
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, EmailStr, Field as PydField
from sqlmodel import select

from ..database import get_session
from ..models.audit_log import AuditLog
from ..models.ministry import Leader, LeaderRole, Ministry
from ..models.person import utcnow
from ..services.stats import stats_cache

router = APIRouter(tags=["ministries"])


# -----------------------------
# Schemas (do NOT use DB model as input)
# -----------------------------

class MinistryCreate(BaseModel):
    name: str = PydField(..., min_length=1, max_length=200)
    location: Optional[str] = None
    # Optional vanity token for the public form; generated when omitted
    public_token: Optional[str] = PydField(default=None, min_length=6, max_length=64, pattern=r"^[A-Za-z0-9_-]+$")


class LeaderCreate(BaseModel):
    ministry_id: int
    full_name: str = PydField(..., min_length=1, max_length=200)
    email: EmailStr
    role: LeaderRole = LeaderRole.LEADER


def _new_public_token() -> str:
    return secrets.token_urlsafe(12)


# -----------------------------
# Ministries
# -----------------------------

@router.post("/ministries", response_model=Ministry, status_code=201)
def create_ministry(payload: MinistryCreate) -> Ministry:
    with get_session() as session:
        token = payload.public_token or _new_public_token()
        existing = session.exec(select(Ministry).where(Ministry.public_token == token)).first()
        if existing:
            raise HTTPException(status_code=409, detail="public_token already exists")

        ministry = Ministry(name=payload.name.strip(), location=payload.location, public_token=token)
        session.add(ministry)
        session.flush()
        session.add(AuditLog(action="CREATE", entity_type="MINISTRY", entity_id=ministry.id))
        session.commit()
        session.refresh(ministry)
        return ministry


@router.get("/ministries", response_model=List[Ministry])
def list_ministries(include_archived: bool = False) -> List[Ministry]:
    with get_session() as session:
        q = select(Ministry)
        if not include_archived:
            q = q.where(Ministry.archived == False)  # noqa: E712
        return list(session.exec(q.order_by(Ministry.id)).all())


@router.get("/ministries/{ministry_id}", response_model=Ministry)
def get_ministry(ministry_id: int) -> Ministry:
    with get_session() as session:
        m = session.get(Ministry, ministry_id)
        if not m:
            raise HTTPException(status_code=404, detail="Ministry not found")
        return m


@router.post("/ministries/{ministry_id}/archive", response_model=Ministry)
def archive_ministry(ministry_id: int) -> Ministry:
    """
    Archive instead of delete. Idempotent. People and history are kept;
    the public registration link stops accepting submissions.
    """
    with get_session() as session:
        m = session.get(Ministry, ministry_id)
        if not m:
            raise HTTPException(status_code=404, detail="Ministry not found")
        if not m.archived:
            m.archived = True
            m.archived_at = utcnow()
            session.add(m)
            session.add(AuditLog(action="ARCHIVE", entity_type="MINISTRY", entity_id=m.id))
            session.commit()
            session.refresh(m)
            stats_cache.invalidate(m.id)
        return m


# -----------------------------
# Leaders
# -----------------------------

@router.post("/leaders", response_model=Leader, status_code=201)
def create_leader(payload: LeaderCreate) -> Leader:
    with get_session() as session:
        if not session.get(Ministry, payload.ministry_id):
            raise HTTPException(status_code=404, detail="Ministry not found")

        email = str(payload.email).lower()
        existing = session.exec(
            select(Leader).where(Leader.ministry_id == payload.ministry_id, Leader.email == email)
        ).first()
        if existing:
            raise HTTPException(status_code=409, detail="Leader with this email already exists")

        leader = Leader(
            ministry_id=payload.ministry_id,
            full_name=payload.full_name.strip(),
            email=email,
            role=payload.role,
        )
        session.add(leader)
        session.commit()
        session.refresh(leader)
        return leader


@router.get("/leaders", response_model=List[Leader])
def list_leaders(ministry_id: Optional[int] = None) -> List[Leader]:
    with get_session() as session:
        q = select(Leader)
        if ministry_id is not None:
            q = q.where(Leader.ministry_id == ministry_id)
        return list(session.exec(q.order_by(Leader.id)).all())
