"""
Pytest configuration.

- Points the app at in-memory SQLite before anything imports zoweh.database.
- Each test gets a fresh StaticPool engine swapped into zoweh.database, so
  routes (get_session) and sweeps (session_scope) all share it.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["NOTIFY_WEBHOOK_URL"] = ""

from datetime import date, datetime  # noqa: E402
from typing import Optional  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from zoweh import database  # noqa: E402
from zoweh.models.ministry import Leader, LeaderRole, Ministry  # noqa: E402
from zoweh.models.person import Person  # noqa: E402
from zoweh.services.member_stages import FollowupStage  # noqa: E402
from zoweh.services.stats import stats_cache  # noqa: E402
from zoweh.services.status_rules import EntityKind  # noqa: E402


# -----------------------------------------------------------------------------
# Database
# -----------------------------------------------------------------------------
@pytest.fixture
def engine(monkeypatch):
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database.register_models()
    SQLModel.metadata.create_all(eng)
    monkeypatch.setattr(database, "engine", eng)
    yield eng
    SQLModel.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture(autouse=True)
def _reset_stats_cache():
    stats_cache.invalidate()
    yield
    stats_cache.invalidate()


@pytest.fixture
def client(engine):
    from zoweh.main import app

    with TestClient(app) as c:
        yield c


# -----------------------------------------------------------------------------
# Factories
# -----------------------------------------------------------------------------
@pytest.fixture
def ministry(session) -> Ministry:
    m = Ministry(name="Grace Chapel", location="Accra", public_token="grace-chapel")
    session.add(m)
    session.commit()
    session.refresh(m)
    return m


@pytest.fixture
def leader(session, ministry) -> Leader:
    ld = Leader(ministry_id=ministry.id, full_name="Ama Mensah", email="ama@grace.example", role=LeaderRole.ADMIN)
    session.add(ld)
    session.commit()
    session.refresh(ld)
    return ld


@pytest.fixture
def make_person(session, ministry):
    def _make(
        kind: EntityKind = EntityKind.CONVERT,
        *,
        first_name: str = "Kofi",
        last_name: str = "Boateng",
        email: Optional[str] = "kofi@example.com",
        status: str = "NEW",
        created_at: Optional[datetime] = None,
        next_followup_date: Optional[date] = None,
        followup_stage: Optional[FollowupStage] = None,
        followup_stage_changed_at: Optional[datetime] = None,
    ) -> Person:
        p = Person(
            ministry_id=ministry.id,
            kind=kind,
            first_name=first_name,
            last_name=last_name,
            email=email,
            status=status,
            next_followup_date=next_followup_date,
            followup_stage=followup_stage,
            followup_stage_changed_at=followup_stage_changed_at,
        )
        if created_at is not None:
            p.created_at = created_at
        session.add(p)
        session.commit()
        session.refresh(p)
        return p

    return _make
