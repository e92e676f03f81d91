"""
Local File Storage Service

Handles response file uploads to local disk storage with:
- Configurable storage root
- Secure filename sanitization
- MIME type and dangerous-extension checks
- Size limit enforcement
- Atomic writes (temp file + rename) and traversal-safe path resolution
"""
import mimetypes
import os
import re
import uuid
from pathlib import Path
from typing import Iterable, List, Optional

import aiofiles

from formdesk.core.logging import storage_logger
from formdesk.exceptions import BadRequest, NotFound


# Blocked extensions (executables, scripts, server-side pages)
BLOCKED_EXTENSIONS = {
    ".exe", ".bat", ".cmd", ".com", ".msi", ".scr", ".dll", ".sys", ".drv",
    ".ps1", ".vbs", ".js", ".jse", ".wsf", ".wsh",
    ".sh", ".bash", ".csh", ".ksh",
    ".py", ".pyw", ".rb", ".pl", ".php", ".phtml",
    ".jsp", ".asp", ".aspx", ".cgi", ".html", ".htm",
    ".app", ".dmg", ".pkg",  # macOS
    ".deb", ".rpm",  # Linux
}

GENERIC_MIME_TYPES = {"", "application/octet-stream"}


class UploadRejected(Exception):
    """An upload failed a size, type or content check before being written."""


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename to prevent path traversal and other attacks.

    - Removes path separators
    - Removes null bytes
    - Limits length
    - Replaces dangerous characters
    """
    if not filename:
        return "unnamed_file"

    # Remove path components, including Windows-style ones
    filename = os.path.basename(filename.replace("\\", "/"))
    filename = filename.replace("\x00", "")

    # Keep alphanumeric, dots, hyphens, underscores
    filename = re.sub(r'[^\w\-.]', '_', filename)

    # Prevent double extensions that could hide real type
    # e.g., "file.txt.exe" -> "file_txt.exe"
    parts = filename.rsplit('.', 1)
    if len(parts) == 2:
        name, ext = parts
        name = name.replace('.', '_')
        filename = f"{name}.{ext}"

    if len(filename) > 200:
        name, ext = os.path.splitext(filename)
        filename = name[:200 - len(ext)] + ext

    return filename or "unnamed_file"


def file_extension(filename: str) -> str:
    """Lower-cased extension of the sanitized name, '' when there is none."""
    return os.path.splitext(sanitize_filename(filename))[1].lower()


def generate_storage_filename(original_filename: str, form_id: str) -> str:
    """
    Generate a unique relative storage path that keeps the original extension.

    Format: <form_id>/<uuid><ext>
    """
    ext = file_extension(original_filename)
    return f"{form_id}/{uuid.uuid4().hex}{ext}"


def validate_file_type(filename: str, content_type: Optional[str], allowed_types: Iterable[str]) -> str:
    """
    Validate file type against the configured allow-list.

    Returns the accepted MIME type or raises UploadRejected.
    """
    allowed = set(allowed_types)
    ext = file_extension(filename)
    if ext in BLOCKED_EXTENSIONS:
        raise UploadRejected(f"File extension '{ext}' is not allowed for security reasons")

    content_type = (content_type or "").split(";")[0].strip().lower()
    if content_type not in GENERIC_MIME_TYPES:
        if content_type in allowed:
            return content_type
        raise UploadRejected(
            f"File type '{content_type}' is not allowed. Allowed types: {', '.join(sorted(allowed))}"
        )

    # Browser sent no useful type: infer it from the extension
    guessed_type, _ = mimetypes.guess_type(filename)
    if guessed_type and guessed_type in allowed:
        return guessed_type

    raise UploadRejected(
        f"File type '{guessed_type or ext or 'unknown'}' is not allowed. "
        f"Allowed types: {', '.join(sorted(allowed))}"
    )


def validate_file_size(size: int, max_size: int) -> None:
    if size > max_size:
        raise UploadRejected(
            f"File size exceeds the maximum allowed size of {max_size / 1048576:g}MB"
        )
    if size == 0:
        raise UploadRejected("Empty files are not allowed")


def validate_path_segments(segments: List[str]) -> str:
    """
    Check a client-supplied list of path segments and join them.

    Raises BadRequest for anything that is not a plain name.
    """
    if not segments:
        raise BadRequest("Missing file path")
    for segment in segments:
        if (
            not segment
            or segment in (".", "..")
            or "\\" in segment
            or "\x00" in segment
            or "/" in segment
            or segment.startswith("~")
        ):
            raise BadRequest("Invalid file path")
    return "/".join(segments)


def resolve_storage_path(relative_path: str, storage_dir: str) -> Path:
    """
    Resolve a stored relative path to an absolute location under storage_dir.

    Raises BadRequest if the path is malformed or escapes the storage root.
    """
    if not relative_path or relative_path.startswith(("/", "\\")) or "\x00" in relative_path:
        raise BadRequest("Invalid file path")
    parts = relative_path.replace("\\", "/").split("/")
    if any(part == ".." for part in parts):
        raise BadRequest("Invalid file path")

    root = Path(storage_dir).resolve()
    full_path = (root / relative_path).resolve()
    if full_path != root and root not in full_path.parents:
        raise BadRequest("Invalid file path")
    return full_path


def get_existing_file(relative_path: str, storage_dir: str) -> Path:
    """Resolve a stored path and require it to be a regular file."""
    full_path = resolve_storage_path(relative_path, storage_dir)
    if not full_path.is_file():
        raise NotFound("File not found")
    return full_path


def file_exists(relative_path: str, storage_dir: str) -> bool:
    try:
        return resolve_storage_path(relative_path, storage_dir).is_file()
    except BadRequest:
        return False


async def save_file(content: bytes, relative_path: str, storage_dir: str) -> Path:
    """
    Write content to storage atomically.

    Bytes go to a temp file next to the target which is renamed into place
    only after a complete write, so readers never see a partial file.
    """
    full_path = resolve_storage_path(relative_path, storage_dir)
    full_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = full_path.with_name(f".{full_path.name}.{uuid.uuid4().hex[:8]}.part")

    try:
        async with aiofiles.open(tmp_path, "wb") as f:
            await f.write(content)
        os.replace(tmp_path, full_path)
    except Exception:
        if tmp_path.exists():
            tmp_path.unlink()
        raise

    return full_path


async def delete_file(relative_path: str, storage_dir: str) -> bool:
    """
    Delete a file from storage.

    Returns True if deleted, False if file didn't exist.
    """
    full_path = resolve_storage_path(relative_path, storage_dir)
    if full_path.is_file():
        full_path.unlink()
        return True
    return False


async def delete_files_quietly(relative_paths: Iterable[str], storage_dir: str) -> None:
    """Remove files whose database rows are already gone; failures are logged."""
    for path in relative_paths:
        if not path:
            continue
        try:
            await delete_file(path, storage_dir)
        except (OSError, BadRequest) as e:
            storage_logger.warning("Failed to delete stored file", path=path, error=str(e))


class StagedUploads:
    """
    Tracks files written while a submission is being persisted.

    Used as ``async with StagedUploads(root) as staged:``; if the block raises,
    every file written through ``staged.write`` is removed again, so a failed
    submission never leaves a file behind without its recorded path.
    """

    def __init__(self, storage_dir: str):
        self.storage_dir = storage_dir
        self.written: List[str] = []

    async def write(self, content: bytes, relative_path: str) -> Path:
        full_path = await save_file(content, relative_path, self.storage_dir)
        self.written.append(relative_path)
        return full_path

    async def __aenter__(self) -> "StagedUploads":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None and self.written:
            storage_logger.warning(
                "Rolling back staged uploads",
                count=len(self.written),
            )
            await delete_files_quietly(self.written, self.storage_dir)
            self.written = []
        return False
