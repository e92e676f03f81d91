"""
Response validation and transform.

Turns raw submitted values (strings, numbers, lists, uploads, barcode
strings, linked submission ids) into the text stored in ResponseField.value.
Nothing here touches the database or the filesystem: file contents are
checked and carried along so the caller can write them once every field of
the submission has passed.
"""
import json
import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, Mapping, Optional

from formdesk.core.config import Settings
from formdesk.db.enums import CHOICE_FIELD_TYPES, FieldType
from formdesk.db.models import Field
from formdesk.exceptions import ValidationError
from formdesk.storage.local import (
    UploadRejected,
    generate_storage_filename,
    sanitize_filename,
    validate_file_size,
    validate_file_type,
)
from formdesk.storage.scanner import scan_content


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")


@dataclass
class UploadedFile:
    """An upload read into memory by the HTTP layer."""
    filename: str
    content_type: Optional[str]
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class NormalizedValue:
    field_id: str
    value: str
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    # Bytes still to be written to `value` (file fields only)
    content: Optional[bytes] = None

    @property
    def is_pending_file(self) -> bool:
        return self.content is not None


def is_blank(raw: Any) -> bool:
    if raw is None:
        return True
    if isinstance(raw, UploadedFile):
        return raw.size == 0
    if isinstance(raw, str):
        return raw.strip() == ""
    if isinstance(raw, (list, tuple)):
        return all(is_blank(item) for item in raw)
    return False


def _as_text(raw: Any) -> str:
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, (list, tuple)):
        return json.dumps([_as_text(item) for item in raw])
    return str(raw).strip()


def _normalize_number(raw: Any) -> str:
    if isinstance(raw, bool):
        raise ValueError("Must be a number")
    text = _as_text(raw)
    try:
        number = float(text)
    except ValueError:
        raise ValueError("Must be a number")
    if not math.isfinite(number):
        raise ValueError("Must be a finite number")
    return text


def _is_iso_date(text: str) -> bool:
    """YYYY-MM-DD, optionally followed by an ISO time."""
    for parse in (date.fromisoformat, datetime.fromisoformat):
        try:
            parse(text)
            return True
        except ValueError:
            continue
    return False


def _normalize_file(field: Field, raw: Any, settings: Settings, form_id: str) -> NormalizedValue:
    if not isinstance(raw, UploadedFile):
        raise ValueError("Expected a file upload")

    try:
        validate_file_size(raw.size, settings.MAX_FILE_SIZE)
        mime_type = validate_file_type(raw.filename, raw.content_type, settings.ALLOWED_FILE_TYPES)
    except UploadRejected as e:
        raise ValueError(str(e))

    if settings.ENABLE_FILE_SCANNING:
        result = scan_content(raw.content, raw.filename, settings.FILE_HASH_BLOCKLIST)
        if not result.safe:
            raise ValueError(result.message or "File failed security scan")

    return NormalizedValue(
        field_id=field.id,
        value=generate_storage_filename(raw.filename, form_id),
        file_name=sanitize_filename(raw.filename),
        file_size=raw.size,
        mime_type=mime_type,
        content=raw.content,
    )


def normalize_field_value(field: Field, raw: Any, settings: Settings, form_id: str) -> NormalizedValue:
    """
    Validate one non-blank value against its field definition.

    Raises ValueError with a user-facing message on failure.
    """
    field_type = field.type
    options = field.option_list

    if field_type == FieldType.file.value:
        return _normalize_file(field, raw, settings, form_id)

    if isinstance(raw, UploadedFile):
        raise ValueError("File uploads are only accepted for file fields")

    if field_type == FieldType.number.value:
        value = _normalize_number(raw)
    elif field_type == FieldType.email.value:
        value = _as_text(raw)
        if not EMAIL_RE.match(value):
            raise ValueError("Must be a valid email address")
    elif field_type == FieldType.date.value:
        value = _as_text(raw)
        if not _is_iso_date(value):
            raise ValueError("Must be a date in YYYY-MM-DD format")
    elif field_type in {t.value for t in CHOICE_FIELD_TYPES}:
        value = _as_text(raw)
        if options and value not in options:
            raise ValueError(f"'{value}' is not one of the available options")
    elif field_type == FieldType.checkbox.value:
        if options and not isinstance(raw, (list, tuple)):
            raw = [raw]
        if isinstance(raw, (list, tuple)):
            selected = [_as_text(item) for item in raw]
            invalid = [s for s in selected if options and s not in options]
            if invalid:
                raise ValueError(f"'{invalid[0]}' is not one of the available options")
            value = json.dumps(selected)
        else:
            # a lone checkbox without options, e.g. "true"
            value = _as_text(raw)
    elif field_type == FieldType.linked_submission.value:
        if not field.linked_form_id:
            raise ValueError("Linked form is not configured for this field")
        if isinstance(raw, (list, tuple)):
            raise ValueError("Select a single linked submission")
        value = _as_text(raw)
    else:
        # text, textarea, barcode and any other free-form type
        value = _as_text(raw)

    return NormalizedValue(field_id=field.id, value=value)


def validate_submission(
    fields: Iterable[Field],
    raw_values: Mapping[str, Any],
    settings: Settings,
    form_id: str,
    partial: bool = False,
) -> Dict[str, NormalizedValue]:
    """
    Validate raw values keyed by field id against the form's fields.

    With ``partial=False`` (new submission) every field gets a value, ``""``
    for optional fields that were left out. With ``partial=True`` (editing a
    response) fields missing from ``raw_values`` are skipped so the stored
    value is kept.

    Errors for all fields are collected and raised together as one
    ValidationError; values for unknown field ids are ignored.
    """
    normalized: Dict[str, NormalizedValue] = {}
    errors: Dict[str, str] = {}

    for field in fields:
        present = field.id in raw_values
        raw = raw_values.get(field.id)

        if partial and not present:
            continue

        if is_blank(raw):
            if field.required:
                errors[field.id] = f"{field.label} is required"
            else:
                normalized[field.id] = NormalizedValue(field_id=field.id, value="")
            continue

        try:
            normalized[field.id] = normalize_field_value(field, raw, settings, form_id)
        except ValueError as e:
            errors[field.id] = str(e)

    if errors:
        raise ValidationError(errors)

    return normalized
