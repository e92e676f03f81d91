"""
Pydantic schemas shared by the services and the HTTP layer.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field as PydanticField

from formdesk.db.enums import FieldType


# ============================================================================
# Form definitions
# ============================================================================

class FieldInput(BaseModel):
    # Id of an existing field to keep; omitted for new fields
    id: Optional[str] = None
    label: str = PydanticField(..., min_length=1, max_length=255)
    type: FieldType
    required: bool = False
    options: List[str] = []
    linked_form_id: Optional[str] = None


class FormCreate(BaseModel):
    title: str = PydanticField(..., min_length=1, max_length=255)
    description: Optional[str] = None
    fields: List[FieldInput] = []


class FormUpdate(BaseModel):
    title: str = PydanticField(..., min_length=1, max_length=255)
    description: Optional[str] = None
    published: Optional[bool] = None
    fields: List[FieldInput] = []


class FieldResponse(BaseModel):
    id: str
    label: str
    type: str
    required: bool
    options: List[str]
    order: int
    linked_form_id: Optional[str] = None


class LinkedFieldSummary(BaseModel):
    id: str
    label: str
    type: str


class LinkedFormSummary(BaseModel):
    id: str
    title: str
    fields: List[LinkedFieldSummary] = []


class FormResponse(BaseModel):
    id: str
    title: str
    description: Optional[str]
    published: bool
    created_by: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    fields: List[FieldResponse] = []
    linked_forms: List[LinkedFormSummary] = []


class FormListResponse(BaseModel):
    id: str
    title: str
    description: Optional[str]
    published: bool
    created_at: Optional[datetime]
    field_count: int


# ============================================================================
# Responses (submissions)
# ============================================================================

class LinkedSubmissionResponse(BaseModel):
    submission_id: str
    form_id: str
    display_value: str
    display_fields: List[str] = []
    submission_data: Dict[str, str] = {}


class ResponseFieldDetail(BaseModel):
    id: str  # Field id
    label: str
    type: str
    value: str
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    file_url: Optional[str] = None
    linked: Optional[LinkedSubmissionResponse] = None


class ResponseDetail(BaseModel):
    id: str
    form_id: str
    form_title: str
    submitted_by: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    fields: List[ResponseFieldDetail] = []


class ResponseSummary(BaseModel):
    id: str
    form_id: str
    submitted_by: str
    created_at: Optional[datetime]
    values: Dict[str, str] = {}  # field id -> stored value


class UserResponseSummary(ResponseSummary):
    form_title: str


class SubmissionResult(BaseModel):
    id: str
    form_id: str
    submitted_by: str
    created_at: Optional[datetime]
    message: str = "Response submitted successfully"


class DeleteResponsesRequest(BaseModel):
    response_ids: List[str] = PydanticField(..., min_length=1)


class DeleteResponsesResult(BaseModel):
    deleted: int
