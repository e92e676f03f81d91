"""
Response Service Layer
Handles submissions against a form: validation, file storage and the
response access rule.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from formdesk.core.config import Settings
from formdesk.core.logging import responses_logger, log_operation
from formdesk.db.enums import ANONYMOUS_SUBMITTER, FieldType
from formdesk.db.models import Form, Response, ResponseField
from formdesk.exceptions import Forbidden, NotFound, Unauthorized, ValidationError
from formdesk.schemas import (
    LinkedSubmissionResponse,
    ResponseDetail,
    ResponseFieldDetail,
)
from formdesk.services.access import (
    can_access_response,
    ensure_form_visible,
    ensure_response_access,
    is_identified,
)
from formdesk.services.forms import collect_file_paths, get_form
from formdesk.services.linked import build_linked_submission, find_invalid_links, load_responses
from formdesk.services.validation import NormalizedValue, UploadedFile, is_blank, validate_submission
from formdesk.storage.local import StagedUploads, delete_files_quietly


SEARCH_LIMIT = 10
DELETE_MARKER_SUFFIX = "_delete"
FILE_URL_PREFIX = "/api/files/"


async def get_response(session: AsyncSession, response_id: str) -> Optional[Response]:
    result = await session.execute(
        select(Response)
        .options(selectinload(Response.fields))
        .where(Response.id == response_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _load_accessible_response(
    session: AsyncSession,
    form_id: str,
    response_id: str,
    requester_id: Optional[str],
) -> tuple:
    if not is_identified(requester_id):
        raise Unauthorized()
    form = await get_form(session, form_id)
    if form is None:
        raise NotFound("Form not found")
    response = await get_response(session, response_id)
    ensure_response_access(response, form, requester_id)
    return form, response


def response_values(response: Response) -> Dict[str, str]:
    """Field id -> stored value."""
    return {rf.field_id: rf.value or "" for rf in response.fields}


async def _check_links(session: AsyncSession, form: Form, normalized: Dict[str, NormalizedValue]) -> None:
    links = {
        field.id: (normalized[field.id].value, field.linked_form_id)
        for field in form.fields
        if field.type == FieldType.linked_submission.value and field.id in normalized
    }
    errors = await find_invalid_links(session, links)
    if errors:
        raise ValidationError(errors)


def _apply_value(row: ResponseField, value: NormalizedValue) -> None:
    row.value = value.value
    row.file_name = value.file_name
    row.file_size = value.file_size
    row.mime_type = value.mime_type


@log_operation("submit_response", responses_logger)
async def submit_response(
    session: AsyncSession,
    form_id: str,
    requester_id: Optional[str],
    raw_values: Mapping[str, Any],
    settings: Settings,
) -> Response:
    """
    Validate and store a new submission.

    Every field is validated before anything is written. Uploads are written
    under STORAGE_DIR and removed again if the transaction does not commit.
    Submitting twice creates two responses.
    """
    form = ensure_form_visible(await get_form(session, form_id), requester_id)

    normalized = validate_submission(form.fields, raw_values, settings, form.id)
    await _check_links(session, form, normalized)

    response = Response(
        form_id=form.id,
        submitted_by=requester_id if is_identified(requester_id) else ANONYMOUS_SUBMITTER,
    )

    async with StagedUploads(settings.STORAGE_DIR) as staged:
        session.add(response)
        await session.flush()

        for value in normalized.values():
            if value.is_pending_file:
                await staged.write(value.content, value.value)
            row = ResponseField(response_id=response.id, field_id=value.field_id)
            _apply_value(row, value)
            session.add(row)

        await session.commit()

    responses_logger.info(
        "Response submitted",
        form_id=form.id,
        response_id=response.id,
        files=len(staged.written),
    )
    return await get_response(session, response.id)


def _delete_markers(raw_values: Mapping[str, Any]) -> set:
    markers = set()
    for key, value in raw_values.items():
        if not key.endswith(DELETE_MARKER_SUFFIX):
            continue
        if isinstance(value, str):
            value = value.strip().lower() in ("true", "1", "yes", "on")
        if value:
            markers.add(key[: -len(DELETE_MARKER_SUFFIX)])
    return markers


@log_operation("update_response", responses_logger)
async def update_response(
    session: AsyncSession,
    form_id: str,
    response_id: str,
    requester_id: Optional[str],
    raw_values: Mapping[str, Any],
    settings: Settings,
) -> Response:
    """
    Update a stored response with a partial set of values.

    Fields absent from ``raw_values`` keep their value; a file field left
    without a new upload (or sent back as its stored path) keeps its file.
    ``<field_id>_delete`` clears a stored file, which fails for required
    fields unless a replacement is uploaded; a required file field sent with
    no stored file needs an upload too. Replaced or cleared files are
    removed after the commit.
    """
    form, response = await _load_accessible_response(session, form_id, response_id, requester_id)

    file_field_ids = {f.id for f in form.fields if f.type == FieldType.file.value}
    deletes = _delete_markers(raw_values) & file_field_ids

    candidates = {
        key: value for key, value in raw_values.items()
        if not (key in file_field_ids and (is_blank(value) or not isinstance(value, UploadedFile)))
    }

    existing = {rf.field_id: rf for rf in response.fields}

    # A required file field must end up holding a file
    errors = {}
    for field in form.fields:
        if field.id not in file_field_ids or not field.required or field.id in candidates:
            continue
        stored = existing.get(field.id)
        has_file = stored is not None and bool(stored.value)
        if field.id in deletes or (field.id in raw_values and not has_file):
            errors[field.id] = f"{field.label} is required"
    if errors:
        raise ValidationError(errors)

    normalized = validate_submission(form.fields, candidates, settings, form.id, partial=True)
    await _check_links(session, form, normalized)

    replaced_paths: List[str] = []

    async with StagedUploads(settings.STORAGE_DIR) as staged:
        for field in form.fields:
            value = normalized.get(field.id)
            clear = field.id in deletes and value is None
            if value is None and not clear:
                continue

            row = existing.get(field.id)
            if field.id in file_field_ids and row is not None and row.value:
                replaced_paths.append(row.value)

            if value is not None and value.is_pending_file:
                await staged.write(value.content, value.value)

            if row is None:
                row = ResponseField(response_id=response.id, field_id=field.id)
                session.add(row)

            _apply_value(row, value or NormalizedValue(field_id=field.id, value=""))

        response.updated_at = datetime.now(timezone.utc)
        await session.commit()

    await delete_files_quietly(replaced_paths, settings.STORAGE_DIR)
    responses_logger.info(
        "Response updated",
        form_id=form.id,
        response_id=response.id,
        changed=len(normalized),
        removed_files=len(replaced_paths),
    )
    return await get_response(session, response.id)


@log_operation("delete_responses", responses_logger)
async def delete_responses(
    session: AsyncSession,
    form_id: str,
    requester_id: Optional[str],
    response_ids: List[str],
    settings: Settings,
) -> int:
    """
    Delete several responses of a form in one transaction.

    Unknown ids are skipped. If any of the responses is not accessible to
    the requester nothing is deleted.
    """
    if not is_identified(requester_id):
        raise Unauthorized()
    form = await get_form(session, form_id)
    if form is None:
        raise NotFound("Form not found")

    result = await session.execute(
        select(Response).where(Response.id.in_(set(response_ids)), Response.form_id == form.id)
    )
    responses = list(result.scalars().all())
    for response in responses:
        if not can_access_response(response, form, requester_id):
            raise Forbidden("Not authorized to delete these responses")

    if not responses:
        return 0

    ids = [r.id for r in responses]
    file_paths = await collect_file_paths(session, ResponseField.response_id.in_(ids))
    await session.execute(delete(ResponseField).where(ResponseField.response_id.in_(ids)))
    await session.execute(delete(Response).where(Response.id.in_(ids)))
    await session.commit()

    await delete_files_quietly(file_paths, settings.STORAGE_DIR)
    responses_logger.info("Responses deleted", form_id=form.id, count=len(ids))
    return len(ids)


async def build_response_detail(
    session: AsyncSession,
    form: Form,
    response: Response,
    settings: Settings,
) -> ResponseDetail:
    """Values in form field order, with linked submissions resolved for display."""
    values = {rf.field_id: rf for rf in response.fields}

    linked_ids = [
        values[f.id].value for f in form.fields
        if f.type == FieldType.linked_submission.value and f.id in values
    ]
    linked_responses = await load_responses(session, linked_ids)

    details = []
    for field in form.fields:
        row = values.get(field.id)
        value = row.value if row is not None else ""
        detail = ResponseFieldDetail(
            id=field.id,
            label=field.label,
            type=field.type,
            value=value or "",
        )
        if field.type == FieldType.file.value and row is not None and value:
            detail.file_name = row.file_name
            detail.file_size = row.file_size
            detail.mime_type = row.mime_type
            detail.file_url = FILE_URL_PREFIX + value
        elif field.type == FieldType.linked_submission.value and value:
            linked = build_linked_submission(
                value, linked_responses.get(value), settings.LINKED_DISPLAY_FIELDS
            )
            detail.linked = LinkedSubmissionResponse(
                submission_id=linked.submission_id,
                form_id=linked.form_id,
                display_value=linked.display_value,
                display_fields=linked.display_fields,
                submission_data=linked.submission_data,
            )
        details.append(detail)

    return ResponseDetail(
        id=response.id,
        form_id=form.id,
        form_title=form.title,
        submitted_by=response.submitted_by,
        created_at=response.created_at,
        updated_at=response.updated_at,
        fields=details,
    )


async def get_response_detail(
    session: AsyncSession,
    form_id: str,
    response_id: str,
    requester_id: Optional[str],
    settings: Settings,
) -> ResponseDetail:
    form, response = await _load_accessible_response(session, form_id, response_id, requester_id)
    return await build_response_detail(session, form, response, settings)


async def list_form_responses(
    session: AsyncSession,
    form_id: str,
    requester_id: Optional[str],
) -> List[Response]:
    """
    Responses of a form, newest first.

    The form creator sees every response, anyone else only their own.
    """
    if not is_identified(requester_id):
        raise Unauthorized()
    form = ensure_form_visible(await get_form(session, form_id), requester_id)

    query = (
        select(Response)
        .options(selectinload(Response.fields))
        .where(Response.form_id == form.id)
        .order_by(Response.created_at.desc())
    )
    if form.created_by != requester_id:
        query = query.where(Response.submitted_by == requester_id)

    result = await session.execute(query)
    return list(result.scalars().all())


async def list_user_responses(session: AsyncSession, requester_id: Optional[str]) -> List[Response]:
    if not is_identified(requester_id):
        raise Unauthorized()
    result = await session.execute(
        select(Response)
        .options(selectinload(Response.fields), selectinload(Response.form))
        .where(Response.submitted_by == requester_id)
        .order_by(Response.created_at.desc())
    )
    return list(result.scalars().all())


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


async def search_responses(
    session: AsyncSession,
    form_id: str,
    requester_id: Optional[str],
    query: str,
) -> List[Response]:
    """Responses with any value containing `query` (case-insensitive), at most SEARCH_LIMIT."""
    if not is_identified(requester_id):
        raise Unauthorized()
    form = ensure_form_visible(await get_form(session, form_id), requester_id)

    query = (query or "").strip()
    if not query:
        return []

    matching = (
        select(ResponseField.response_id)
        .where(ResponseField.value.ilike(f"%{_escape_like(query)}%", escape="\\"))
    )
    statement = (
        select(Response)
        .options(selectinload(Response.fields))
        .where(Response.form_id == form.id, Response.id.in_(matching))
        .order_by(Response.created_at.desc())
        .limit(SEARCH_LIMIT)
    )
    if form.created_by != requester_id:
        statement = statement.where(Response.submitted_by == requester_id)

    result = await session.execute(statement)
    return list(result.scalars().all())
