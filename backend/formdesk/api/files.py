from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from formdesk.api.deps import get_db, get_optional_user_id, get_settings
from formdesk.core.config import Settings
from formdesk.services.files import get_stored_file

router = APIRouter(prefix="/files", tags=["Files"])


@router.get("/{file_path:path}")
async def download_file(
    file_path: str,
    user_id: Optional[str] = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Download an uploaded file under its original name."""
    stored = await get_stored_file(db, file_path.split("/"), user_id, settings.STORAGE_DIR)
    return FileResponse(
        path=stored.path,
        filename=stored.file_name,
        media_type=stored.mime_type,
    )
