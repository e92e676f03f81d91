"""
CSV export of a form's responses.
"""
import csv
import io
import re
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from formdesk.core.logging import forms_logger, log_operation
from formdesk.db.models import Form, Response
from formdesk.services.forms import get_owned_form


DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
BASE_COLUMNS = ["Submission Date", "Submitted By"]


def export_filename(form: Form) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (form.title or "").lower()).strip("-")
    return f"{slug or 'form'}-responses.csv"


def build_csv(form: Form, responses: List[Response]) -> str:
    """
    Header is ``Submission Date,Submitted By,<field labels in order>``.
    Each data row looks values up by field id and leaves missing ones empty.
    """
    buffer = io.StringIO()
    header_writer = csv.writer(buffer, lineterminator="\n")
    row_writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")

    header_writer.writerow(BASE_COLUMNS + [field.label for field in form.fields])

    for response in responses:
        values = {rf.field_id: rf.value or "" for rf in response.fields}
        submitted = response.created_at.strftime(DATE_FORMAT) if response.created_at else ""
        row_writer.writerow(
            [submitted, response.submitted_by]
            + [values.get(field.id, "") for field in form.fields]
        )

    return buffer.getvalue()


@log_operation("export_responses", forms_logger)
async def export_responses_csv(
    session: AsyncSession,
    form_id: str,
    requester_id: Optional[str],
) -> tuple:
    """Returns (filename, csv text). Only the form creator may export."""
    form = await get_owned_form(session, form_id, requester_id)
    result = await session.execute(
        select(Response)
        .options(selectinload(Response.fields))
        .where(Response.form_id == form.id)
        .order_by(Response.created_at.asc())
    )
    responses = list(result.scalars().all())
    return export_filename(form), build_csv(form, responses)
