"""
UI text catalog and icon lookup.

Every entry can be overridden per deployment through Settings; empty
overrides fall back to the defaults below.
"""
from typing import Dict

from formdesk.core.config import Settings
from formdesk.core.logging import get_logger

logger = get_logger('formdesk.text')

KNOWN_ICONS = ("FileText", "File", "ClipboardList", "Check", "Settings", "Home", "Pencil", "Box")
DEFAULT_ICON = "FileText"


def welcome_message(settings: Settings) -> str:
    return settings.TEXT_WELCOME_MESSAGE or f"Welcome to {settings.APP_NAME}"


def forms_available_message(settings: Settings, count: int) -> str:
    template = settings.TEXT_FORMS_AVAILABLE_MESSAGE
    if template:
        return template.replace("{count}", str(count))
    return f"There are {count} form{'' if count == 1 else 's'} available."


def get_icon(name: str = DEFAULT_ICON) -> str:
    """Known icon name, or the default icon for anything else."""
    if name in KNOWN_ICONS:
        return name
    logger.warning("Unknown icon requested, using default", icon=name, default=DEFAULT_ICON)
    return DEFAULT_ICON


def text_catalog(settings: Settings, forms_available: int = 0) -> Dict[str, str]:
    return {
        "app_name": settings.APP_NAME,
        "manage_forms": settings.TEXT_MANAGE_FORMS,
        "create_new_form": settings.TEXT_CREATE_NEW_FORM,
        "available_forms": settings.TEXT_AVAILABLE_FORMS,
        "welcome_message": welcome_message(settings),
        "welcome_description": settings.TEXT_WELCOME_DESCRIPTION,
        "forms_available_message": forms_available_message(settings, forms_available),
    }
