from typing import Dict

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from formdesk.api.deps import get_db, get_settings
from formdesk.core.config import Settings
from formdesk.core.text import get_icon, text_catalog
from formdesk.db.models import Form

router = APIRouter(prefix="/app", tags=["App"])


@router.get("/text", response_model=Dict[str, str])
async def get_text(
    icon: str = "FileText",
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """UI strings for the current deployment."""
    count = await db.scalar(select(func.count(Form.id)).where(Form.published.is_(True)))
    catalog = text_catalog(settings, count or 0)
    catalog["icon"] = get_icon(icon)
    return catalog
