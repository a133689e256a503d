from __future__ import annotations

import csv
import io
from typing import Iterable, List

from ..models.person import Person
from .status_rules import to_export_label

EXPORT_HEADERS: List[str] = [
    "First Name",
    "Last Name",
    "Type",
    "Phone",
    "Email",
    "Status",
    "Next Follow-up",
    "Created At",
]

KIND_LABELS = {
    "CONVERT": "Convert",
    "NEW_MEMBER": "New Member",
    "MEMBER": "Member",
}


def export_row(person: Person) -> List[str]:
    kind = getattr(person.kind, "value", person.kind)
    return [
        person.first_name,
        person.last_name,
        KIND_LABELS.get(kind, kind),
        person.phone or "",
        person.email or "",
        to_export_label(person.status),
        person.next_followup_date.isoformat() if person.next_followup_date else "",
        person.created_at.isoformat() if person.created_at else "",
    ]


def export_people_csv(people: Iterable[Person]) -> str:
    """
    Spreadsheet export. Status uses the export label table, so a legacy token
    without an export label fails loudly (UnknownStatusError) instead of
    writing a guess.
    """
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(EXPORT_HEADERS)
    for person in people:
        writer.writerow(export_row(person))
    return buf.getvalue()
