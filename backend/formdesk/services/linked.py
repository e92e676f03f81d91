"""
Linked submission resolution.

A linkedSubmission field stores the id of a Response of another form. The
reference is soft: the target may be deleted later, so resolution never
raises for a dangling id and returns an empty display instead.
"""
from dataclasses import dataclass, field as dataclass_field
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from formdesk.db.enums import FieldType
from formdesk.db.models import Response, ResponseField


@dataclass
class LinkedSubmission:
    submission_id: str
    form_id: str
    display_value: str
    display_fields: List[str] = dataclass_field(default_factory=list)
    submission_data: Dict[str, str] = dataclass_field(default_factory=dict)

    @property
    def is_resolved(self) -> bool:
        return bool(self.form_id)


def submission_data(response: Response) -> Dict[str, str]:
    """Label -> value for a loaded response, in the form's field order."""
    rows = [rf for rf in response.fields if rf.field is not None]
    rows.sort(key=lambda rf: rf.field.order)
    return {rf.field.label: rf.value or "" for rf in rows}


def _display_values(response: Response, display_fields: List[str]) -> List[str]:
    rows = sorted(
        (rf for rf in response.fields if rf.field is not None),
        key=lambda rf: rf.field.order,
    )
    if display_fields:
        wanted = set(display_fields)
        rows = [rf for rf in rows if rf.field.label in wanted or rf.field_id in wanted]
    else:
        # Stored paths make poor labels
        rows = [rf for rf in rows if rf.field.type != FieldType.file.value]
    return [rf.value for rf in rows if rf.value]


def build_linked_submission(
    value: Optional[str],
    response: Optional[Response],
    display_fields: Optional[Iterable[str]] = None,
) -> Optional[LinkedSubmission]:
    """
    Build the display for a stored linked submission value.

    Returns None for an empty value. A missing response yields an empty
    display. Without display fields every non-file value is shown; if nothing
    can be shown the submission id is used.
    """
    if not value:
        return None

    display_fields = list(display_fields or [])

    if response is None:
        return LinkedSubmission(submission_id=value, form_id="", display_value="")

    values = _display_values(response, display_fields)
    return LinkedSubmission(
        submission_id=response.id,
        form_id=response.form_id,
        display_value=", ".join(values) if values else response.id,
        display_fields=display_fields,
        submission_data=submission_data(response),
    )


async def load_responses(session: AsyncSession, response_ids: Iterable[str]) -> Dict[str, Response]:
    ids = {rid for rid in response_ids if rid}
    if not ids:
        return {}
    result = await session.execute(
        select(Response)
        .options(selectinload(Response.fields).selectinload(ResponseField.field))
        .where(Response.id.in_(ids))
    )
    return {r.id: r for r in result.scalars().all()}


async def resolve_linked_submission(
    session: AsyncSession,
    value: Optional[str],
    display_fields: Optional[Iterable[str]] = None,
) -> Optional[LinkedSubmission]:
    if not value:
        return None
    responses = await load_responses(session, [value])
    return build_linked_submission(value, responses.get(value), display_fields)


async def find_invalid_links(
    session: AsyncSession,
    links: Dict[str, tuple],
) -> Dict[str, str]:
    """
    Check submitted linked submission ids.

    ``links`` maps field id -> (response id, linked form id). Returns field
    id -> error message for every id that is not a response of the linked form.
    """
    wanted = {response_id for response_id, _ in links.values() if response_id}
    if not wanted:
        return {}
    result = await session.execute(
        select(Response.id, Response.form_id).where(Response.id.in_(wanted))
    )
    found = {row.id: row.form_id for row in result.all()}

    errors = {}
    for field_id, (response_id, linked_form_id) in links.items():
        if not response_id:
            continue
        if found.get(response_id) != linked_form_id:
            errors[field_id] = "Linked submission not found"
    return errors
