from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response

from ..database import get_session
from ..models.ministry import Ministry
from ..models.person import Person
from ..services.export import export_people_csv
from ..services.stats import stats_cache
from ..services.status_rules import CanonicalStatus, EntityKind
from .people import people_query

router = APIRouter(tags=["reports"])


@router.get("/stats")
def get_stats(ministry_id: int) -> Dict[str, Any]:
    """
    Dashboard counts per kind and canonical status (cached until the next
    status change in this ministry).
    """
    with get_session() as session:
        if not session.get(Ministry, ministry_id):
            raise HTTPException(status_code=404, detail="Ministry not found")
        return asdict(stats_cache.get(session, ministry_id))


@router.get("/export/people.csv")
def export_people(
    ministry_id: Optional[int] = None,
    kind: Optional[EntityKind] = None,
    status: Optional[CanonicalStatus] = None,
    search: Optional[str] = None,
) -> Response:
    with get_session() as session:
        q = people_query(ministry_id, kind, status, search).order_by(Person.created_at.desc(), Person.id.desc())
        csv_text = export_people_csv(session.exec(q).all())

    filename = f"{kind.value.lower()}s.csv" if kind else "people.csv"
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
