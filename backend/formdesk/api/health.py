from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text

from formdesk.api.deps import get_db, get_settings
from formdesk.core.config import Settings
from formdesk.core.logging import db_logger
from formdesk.storage.local import resolve_storage_path

router = APIRouter(tags=["Health"])


@router.get('/health')
def health():
    return {"status": "ok"}


@router.get('/readyz')
async def readyz(db: AsyncSession = Depends(get_db), settings: Settings = Depends(get_settings)):
    # Check DB connectivity
    try:
        await db.execute(text('SELECT 1'))
    except Exception:
        db_logger.exception('Readiness DB check failed')
        raise HTTPException(status_code=503, detail='Not ready')

    # Uploads need a writable storage root
    storage_root = resolve_storage_path('.', settings.STORAGE_DIR)
    try:
        storage_root.mkdir(parents=True, exist_ok=True)
    except OSError:
        db_logger.exception('Readiness storage check failed', storage_dir=settings.STORAGE_DIR)
        raise HTTPException(status_code=503, detail='Not ready')

    return {"status": "ready"}
