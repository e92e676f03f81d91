"""
Form Builder API

Provides:
- Owner CRUD for forms and their ordered fields
- Published form listing and definition fetch
- Publish toggle and CSV export
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import Response as HTTPResponse
from sqlalchemy.ext.asyncio import AsyncSession

from formdesk.api.deps import get_current_user_id, get_db, get_optional_user_id, get_settings
from formdesk.core.config import Settings
from formdesk.db.models import Field, Form
from formdesk.schemas import (
    FieldResponse,
    FormCreate,
    FormListResponse,
    FormResponse,
    FormUpdate,
    LinkedFieldSummary,
    LinkedFormSummary,
)
from formdesk.services import export as export_service
from formdesk.services import forms as form_service
from formdesk.storage.local import delete_files_quietly


router = APIRouter(prefix="/forms", tags=["Forms"])


# ============================================================================
# Helper Functions
# ============================================================================

def _field_to_response(field: Field) -> FieldResponse:
    return FieldResponse(
        id=field.id,
        label=field.label,
        type=field.type,
        required=field.required,
        options=field.option_list,
        order=field.order,
        linked_form_id=field.linked_form_id,
    )


def _linked_form_summary(form: Form) -> LinkedFormSummary:
    return LinkedFormSummary(
        id=form.id,
        title=form.title,
        fields=[LinkedFieldSummary(id=f.id, label=f.label, type=f.type) for f in form.fields],
    )


def _form_to_response(form: Form, linked_forms: Optional[List[Form]] = None) -> FormResponse:
    """Convert Form model to response schema."""
    return FormResponse(
        id=form.id,
        title=form.title,
        description=form.description,
        published=form.published,
        created_by=form.created_by,
        created_at=form.created_at,
        updated_at=form.updated_at,
        fields=[_field_to_response(f) for f in form.fields],
        linked_forms=[_linked_form_summary(f) for f in linked_forms or []],
    )


def _form_to_list_item(form: Form) -> FormListResponse:
    return FormListResponse(
        id=form.id,
        title=form.title,
        description=form.description,
        published=form.published,
        created_at=form.created_at,
        field_count=len(form.fields),
    )


# ============================================================================
# Endpoints
# ============================================================================

@router.post("", response_model=FormResponse, status_code=status.HTTP_201_CREATED)
async def create_form(
    payload: FormCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Create a draft form. Field order follows the list order."""
    form = await form_service.create_form(db, user_id, payload)
    return _form_to_response(form, await form_service.get_linked_forms(db, form, user_id))


@router.get("", response_model=List[FormListResponse])
async def list_my_forms(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    forms = await form_service.list_owned_forms(db, user_id)
    return [_form_to_list_item(f) for f in forms]


@router.get("/available", response_model=List[FormListResponse])
async def list_available_forms(db: AsyncSession = Depends(get_db)):
    """Published forms anyone can fill in."""
    forms = await form_service.list_available_forms(db)
    return [_form_to_list_item(f) for f in forms]


@router.get("/{form_id}", response_model=FormResponse)
async def get_form(
    form_id: str,
    user_id: Optional[str] = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
):
    form = await form_service.get_visible_form(db, form_id, user_id)
    return _form_to_response(form, await form_service.get_linked_forms(db, form, user_id))


@router.put("/{form_id}", response_model=FormResponse)
async def update_form(
    form_id: str,
    payload: FormUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Replace the form's details and field list.

    Send the id of a current field to keep it (and its answers); fields
    missing from the list are removed with their answers.
    """
    form, removed_paths = await form_service.update_form(db, form_id, user_id, payload)
    await delete_files_quietly(removed_paths, settings.STORAGE_DIR)
    return _form_to_response(form, await form_service.get_linked_forms(db, form, user_id))


@router.post("/{form_id}/publish", response_model=FormResponse)
async def toggle_publish(
    form_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    form = await form_service.toggle_publish(db, form_id, user_id)
    return _form_to_response(form, await form_service.get_linked_forms(db, form, user_id))


@router.delete("/{form_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_form(
    form_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    file_paths = await form_service.delete_form(db, form_id, user_id)
    await delete_files_quietly(file_paths, settings.STORAGE_DIR)
    return HTTPResponse(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{form_id}/export")
async def export_responses(
    form_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Download all responses as CSV."""
    filename, content = await export_service.export_responses_csv(db, form_id, user_id)
    return HTTPResponse(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
