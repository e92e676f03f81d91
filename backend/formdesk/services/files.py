"""
Serving stored uploads.
"""
from pathlib import Path
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from formdesk.core.logging import storage_logger
from formdesk.db.enums import FieldType
from formdesk.db.models import Field, Response, ResponseField
from formdesk.exceptions import NotFound, Unauthorized
from formdesk.services.access import ensure_response_access, is_identified
from formdesk.storage.local import get_existing_file, validate_path_segments


class StoredFile:
    def __init__(self, path: Path, file_name: Optional[str], mime_type: Optional[str]):
        self.path = path
        self.file_name = file_name or path.name
        self.mime_type = mime_type or "application/octet-stream"


async def get_stored_file(
    session: AsyncSession,
    segments: List[str],
    requester_id: Optional[str],
    storage_dir: str,
) -> StoredFile:
    """
    Resolve a requested upload for download.

    The path must be recorded as the value of a file field, and the requester
    must be allowed to see the response holding it.
    """
    relative_path = validate_path_segments(segments)
    if not is_identified(requester_id):
        raise Unauthorized()

    result = await session.execute(
        select(ResponseField)
        .join(Field, ResponseField.field_id == Field.id)
        .options(selectinload(ResponseField.response).selectinload(Response.form))
        .where(ResponseField.value == relative_path, Field.type == FieldType.file.value)
    )
    row = result.scalars().first()
    if row is None:
        raise NotFound("File not found")

    response = row.response
    ensure_response_access(response, response.form, requester_id)

    full_path = get_existing_file(relative_path, storage_dir)
    storage_logger.debug("Serving stored file", path=relative_path, response_id=response.id)
    return StoredFile(full_path, row.file_name, row.mime_type)
