"""
Form Service Layer
Creates, edits, publishes and deletes forms and their ordered fields.
"""
import json
from typing import Dict, List, Optional

from sqlalchemy import select, delete, update, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from formdesk.core.logging import forms_logger, log_operation
from formdesk.db.enums import FieldType
from formdesk.db.models import Form, Field, Response, ResponseField
from formdesk.exceptions import ValidationError
from formdesk.schemas import FieldInput, FormCreate, FormUpdate
from formdesk.services.access import can_view_form, ensure_form_owner, ensure_form_visible


async def get_form(session: AsyncSession, form_id: str) -> Optional[Form]:
    """Get a form with its fields sorted by order."""
    result = await session.execute(
        select(Form)
        .options(selectinload(Form.fields))
        .where(Form.id == form_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_visible_form(session: AsyncSession, form_id: str, requester_id: Optional[str]) -> Form:
    return ensure_form_visible(await get_form(session, form_id), requester_id)


async def get_owned_form(session: AsyncSession, form_id: str, requester_id: Optional[str]) -> Form:
    return ensure_form_owner(await get_form(session, form_id), requester_id)


async def list_owned_forms(session: AsyncSession, owner_id: str) -> List[Form]:
    result = await session.execute(
        select(Form)
        .options(selectinload(Form.fields))
        .where(Form.created_by == owner_id)
        .order_by(Form.created_at.desc())
    )
    return list(result.scalars().all())


async def list_available_forms(session: AsyncSession) -> List[Form]:
    """Published forms, newest first."""
    result = await session.execute(
        select(Form)
        .options(selectinload(Form.fields))
        .where(Form.published.is_(True))
        .order_by(Form.created_at.desc())
    )
    return list(result.scalars().all())


async def get_linked_forms(session: AsyncSession, form: Form, requester_id: Optional[str]) -> List[Form]:
    """Forms referenced by the linkedSubmission fields of `form` that the requester may see."""
    linked_ids = {
        f.linked_form_id for f in form.fields
        if f.type == FieldType.linked_submission.value and f.linked_form_id
    }
    if not linked_ids:
        return []
    conditions = [Form.published.is_(True)]
    if requester_id:
        conditions.append(Form.created_by == requester_id)
    result = await session.execute(
        select(Form)
        .options(selectinload(Form.fields))
        .where(Form.id.in_(linked_ids), or_(*conditions))
    )
    return list(result.scalars().all())


async def _check_field_inputs(
    session: AsyncSession,
    fields: List[FieldInput],
    requester_id: str,
) -> Dict[int, Optional[str]]:
    """
    Validate field definitions and return index -> linked form id.

    Linked forms are checked against the forms that exist right now, since
    field and form ids are not guaranteed to survive edits.
    """
    errors: Dict[str, str] = {}
    linked: Dict[int, Optional[str]] = {}

    seen_ids = set()
    for index, field in enumerate(fields):
        if field.id:
            if field.id in seen_ids:
                errors[f"fields.{index}"] = "Duplicate field id"
            seen_ids.add(field.id)

    wanted = {
        f.linked_form_id for f in fields
        if f.type == FieldType.linked_submission and f.linked_form_id
    }
    visible: Dict[str, Form] = {}
    if wanted:
        result = await session.execute(select(Form).where(Form.id.in_(wanted)))
        visible = {
            form.id: form for form in result.scalars().all()
            if can_view_form(form, requester_id)
        }

    for index, field in enumerate(fields):
        if field.type != FieldType.linked_submission:
            linked[index] = None
            continue
        if not field.linked_form_id:
            errors[f"fields.{index}"] = "Linked submission fields need a linked form"
        elif field.linked_form_id not in visible:
            errors[f"fields.{index}"] = "Linked form not found"
        else:
            linked[index] = field.linked_form_id

    if errors:
        raise ValidationError(errors, "Invalid form fields")
    return linked


def _new_field(form_id: str, field: FieldInput, order: int, linked_form_id: Optional[str]) -> Field:
    return Field(
        form_id=form_id,
        label=field.label,
        type=field.type.value,
        required=field.required,
        options=json.dumps(field.options),
        order=order,
        linked_form_id=linked_form_id,
    )


async def collect_file_paths(session: AsyncSession, *conditions) -> List[str]:
    """Stored paths of file-field values matching the given ResponseField conditions."""
    result = await session.execute(
        select(ResponseField.value)
        .join(Field, ResponseField.field_id == Field.id)
        .where(Field.type == FieldType.file.value, ResponseField.value != "", *conditions)
    )
    return [row[0] for row in result.all()]


@log_operation("create_form", forms_logger)
async def create_form(session: AsyncSession, owner_id: str, payload: FormCreate) -> Form:
    """
    Create a form and its fields in one transaction.

    Field order is the position in the payload.
    """
    linked = await _check_field_inputs(session, payload.fields, owner_id)

    form = Form(
        title=payload.title,
        description=payload.description or "",
        published=False,
        created_by=owner_id,
    )
    session.add(form)
    await session.flush()

    for index, field in enumerate(payload.fields):
        session.add(_new_field(form.id, field, index, linked[index]))

    await session.commit()
    forms_logger.info("Form created", form_id=form.id, fields=len(payload.fields))
    return await get_form(session, form.id)


@log_operation("update_form", forms_logger)
async def update_form(
    session: AsyncSession,
    form_id: str,
    requester_id: Optional[str],
    payload: FormUpdate,
) -> tuple:
    """
    Update form details and reconcile its fields in one transaction.

    Incoming fields carrying the id of a current field update it in place so
    existing answers stay attached; others are created. Current fields left
    out of the payload are deleted along with their response values.

    Returns (form, removed_file_paths); the caller deletes the files once the
    transaction has committed.
    """
    form = await get_owned_form(session, form_id, requester_id)
    linked = await _check_field_inputs(session, payload.fields, requester_id)

    form.title = payload.title
    form.description = payload.description or ""
    if payload.published is not None:
        form.published = payload.published

    current = {f.id: f for f in form.fields}
    keep_ids = {f.id for f in payload.fields if f.id in current}
    removed = [f for f in form.fields if f.id not in keep_ids]
    retyped_ids = [
        f.id for f in payload.fields
        if f.id in keep_ids and current[f.id].type != f.type.value
    ]

    # Answers stored under a field's old type are dropped with it
    cleared_ids = [f.id for f in removed] + retyped_ids
    removed_paths: List[str] = []
    if cleared_ids:
        removed_paths = await collect_file_paths(session, ResponseField.field_id.in_(cleared_ids))
        await session.execute(
            delete(ResponseField).where(ResponseField.field_id.in_(cleared_ids))
        )
        for field in removed:
            await session.delete(field)

    # Park kept fields on negative orders so reordering can't collide
    # with the (form_id, order) unique constraint mid-update
    for index, field_id in enumerate(keep_ids):
        current[field_id].order = -(index + 1)
    await session.flush()

    for index, field in enumerate(payload.fields):
        if field.id in keep_ids:
            existing = current[field.id]
            existing.label = field.label
            existing.type = field.type.value
            existing.required = field.required
            existing.options = json.dumps(field.options)
            existing.order = index
            existing.linked_form_id = linked[index]
        else:
            session.add(_new_field(form.id, field, index, linked[index]))

    await session.flush()
    await session.commit()
    forms_logger.info(
        "Form updated",
        form_id=form_id,
        fields=len(payload.fields),
        removed=len(removed),
        retyped=len(retyped_ids),
    )
    return await get_form(session, form_id), removed_paths


@log_operation("toggle_form_publish", forms_logger)
async def toggle_publish(session: AsyncSession, form_id: str, requester_id: Optional[str]) -> Form:
    form = await get_owned_form(session, form_id, requester_id)
    form.published = not form.published
    await session.commit()
    return await get_form(session, form_id)


@log_operation("delete_form", forms_logger)
async def delete_form(session: AsyncSession, form_id: str, requester_id: Optional[str]) -> List[str]:
    """
    Delete a form with its fields and responses.

    Foreign keys are RESTRICT, so dependents are removed explicitly, children
    first. Links from other forms' fields are cleared. Returns the stored
    file paths that belonged to the deleted responses.
    """
    result = await session.execute(select(Form).where(Form.id == form_id))
    ensure_form_owner(result.scalar_one_or_none(), requester_id)

    response_ids = select(Response.id).where(Response.form_id == form_id)
    file_paths = await collect_file_paths(session, ResponseField.response_id.in_(response_ids))

    await session.execute(
        delete(ResponseField).where(ResponseField.response_id.in_(response_ids))
    )
    await session.execute(delete(Response).where(Response.form_id == form_id))
    await session.execute(
        update(Field)
        .where(Field.linked_form_id == form_id, Field.form_id != form_id)
        .values(linked_form_id=None)
    )
    await session.execute(delete(Field).where(Field.form_id == form_id))
    await session.execute(delete(Form).where(Form.id == form_id))
    await session.commit()

    forms_logger.info("Form deleted", form_id=form_id, files=len(file_paths))
    return file_paths
