"""
Responses API

Submissions are sent as multipart form data keyed by field id (uploads as
files, repeated keys for multi-value fields) or as a JSON object with the
same keys.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile

from formdesk.api.deps import get_current_user_id, get_db, get_optional_user_id, get_settings
from formdesk.core.config import Settings
from formdesk.db.models import Response
from formdesk.exceptions import BadRequest, ValidationError
from formdesk.schemas import (
    DeleteResponsesRequest,
    DeleteResponsesResult,
    ResponseDetail,
    ResponseSummary,
    SubmissionResult,
    UserResponseSummary,
)
from formdesk.services import responses as response_service
from formdesk.services.validation import UploadedFile
from formdesk.storage.local import UploadRejected, validate_file_size


router = APIRouter(prefix="/forms/{form_id}/responses", tags=["Responses"])
user_router = APIRouter(prefix="/responses", tags=["Responses"])


async def _read_submission(request: Request, settings: Settings) -> Dict[str, Any]:
    """
    Collect submitted values keyed by field id.

    Uploads over MAX_FILE_SIZE are rejected from their spooled size before
    any of them is read into memory.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        payload = await request.json()
        if not isinstance(payload, dict):
            raise BadRequest("Expected a JSON object of field values")
        return payload

    form = await request.form()

    errors: Dict[str, str] = {}
    for key, item in form.multi_items():
        if isinstance(item, UploadFile) and item.size:
            try:
                validate_file_size(item.size, settings.MAX_FILE_SIZE)
            except UploadRejected as e:
                errors[key] = str(e)
    if errors:
        await form.close()
        raise ValidationError(errors)

    values: Dict[str, Any] = {}
    for key in form.keys():
        items = []
        for item in form.getlist(key):
            if isinstance(item, UploadFile):
                items.append(UploadedFile(
                    filename=item.filename or "",
                    content_type=item.content_type,
                    content=await item.read(),
                ))
                await item.close()
            else:
                items.append(item)
        values[key] = items[0] if len(items) == 1 else items
    return values


def _to_summary(response: Response) -> ResponseSummary:
    return ResponseSummary(
        id=response.id,
        form_id=response.form_id,
        submitted_by=response.submitted_by,
        created_at=response.created_at,
        values=response_service.response_values(response),
    )


@router.post("", response_model=SubmissionResult, status_code=status.HTTP_201_CREATED)
async def submit_response(
    form_id: str,
    request: Request,
    user_id: Optional[str] = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Submit a response. Anonymous callers may submit to published forms."""
    values = await _read_submission(request, settings)
    response = await response_service.submit_response(db, form_id, user_id, values, settings)
    return SubmissionResult(
        id=response.id,
        form_id=response.form_id,
        submitted_by=response.submitted_by,
        created_at=response.created_at,
    )


@router.get("", response_model=List[ResponseSummary])
async def list_responses(
    form_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    responses = await response_service.list_form_responses(db, form_id, user_id)
    return [_to_summary(r) for r in responses]


@router.get("/search", response_model=List[ResponseSummary])
async def search_responses(
    form_id: str,
    query: str = Query("", max_length=255),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    responses = await response_service.search_responses(db, form_id, user_id, query)
    return [_to_summary(r) for r in responses]


@router.delete("", response_model=DeleteResponsesResult)
async def delete_responses(
    form_id: str,
    payload: DeleteResponsesRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    deleted = await response_service.delete_responses(
        db, form_id, user_id, payload.response_ids, settings
    )
    return DeleteResponsesResult(deleted=deleted)


@router.get("/{response_id}", response_model=ResponseDetail)
async def get_response(
    form_id: str,
    response_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return await response_service.get_response_detail(db, form_id, response_id, user_id, settings)


@router.put("/{response_id}", response_model=ResponseDetail)
async def update_response(
    form_id: str,
    response_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Update some values of a response.

    Omitted fields are kept. Send ``<field_id>_delete=true`` to clear a
    stored file.
    """
    values = await _read_submission(request, settings)
    await response_service.update_response(db, form_id, response_id, user_id, values, settings)
    return await response_service.get_response_detail(db, form_id, response_id, user_id, settings)


@user_router.get("/user", response_model=List[UserResponseSummary])
async def list_my_responses(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Responses the caller has submitted, across forms."""
    responses = await response_service.list_user_responses(db, user_id)
    return [
        UserResponseSummary(
            id=r.id,
            form_id=r.form_id,
            form_title=r.form.title,
            submitted_by=r.submitted_by,
            created_at=r.created_at,
            values=response_service.response_values(r),
        )
        for r in responses
    ]
