"""
Upload content scanning.

Cheap checks run on the bytes of an upload before it is written:
extension deny-list, magic-byte signature vs. extension, suspicious
script patterns, and an optional MD5 blocklist.
"""
import hashlib
import re
from dataclasses import dataclass
from typing import Collection, Dict, Optional

from formdesk.storage.local import BLOCKED_EXTENSIONS, file_extension


# Expected leading bytes per extension
EXTENSION_SIGNATURES: Dict[str, tuple] = {
    ".jpg": (b"\xff\xd8\xff",),
    ".jpeg": (b"\xff\xd8\xff",),
    ".png": (b"\x89PNG",),
    ".gif": (b"GIF8",),
    ".pdf": (b"%PDF",),
    ".docx": (b"PK\x03\x04",),
    ".xlsx": (b"PK\x03\x04",),
    ".pptx": (b"PK\x03\x04",),
    ".zip": (b"PK\x03\x04",),
}

SUSPICIOUS_PATTERNS = [
    re.compile(rb"<script.*?>.*?</script>", re.IGNORECASE | re.DOTALL),
    re.compile(rb"eval\s*\(", re.IGNORECASE),
    re.compile(rb"document\.write\s*\(", re.IGNORECASE),
    re.compile(rb"fromCharCode", re.IGNORECASE),
    re.compile(rb"<\?php", re.IGNORECASE),
    re.compile(rb"TVqQAAMAAAA"),  # base64 DOS MZ header
    re.compile(rb"(\\x[0-9a-f]{2}){4}", re.IGNORECASE),
]

# Only the head of the file is inspected for patterns
CONTENT_SCAN_BYTES = 10000


@dataclass
class ScanResult:
    safe: bool
    threat_type: Optional[str] = None
    message: Optional[str] = None


def scan_content(content: bytes, filename: str, hash_blocklist: Collection[str] = ()) -> ScanResult:
    ext = file_extension(filename)

    if ext in BLOCKED_EXTENSIONS:
        return ScanResult(
            safe=False,
            threat_type="Potentially dangerous file type",
            message=f"File extension {ext} is not allowed for security reasons",
        )

    signatures = EXTENSION_SIGNATURES.get(ext)
    if signatures and not any(content.startswith(sig) for sig in signatures):
        return ScanResult(
            safe=False,
            threat_type="File signature mismatch",
            message=f"File signature doesn't match {ext} extension",
        )

    head = content[:CONTENT_SCAN_BYTES]
    for pattern in SUSPICIOUS_PATTERNS:
        if pattern.search(head):
            return ScanResult(
                safe=False,
                threat_type="Suspicious content detected",
                message="File contains suspicious code patterns",
            )

    if hash_blocklist:
        digest = hashlib.md5(content).hexdigest()
        if digest in {h.lower() for h in hash_blocklist}:
            return ScanResult(
                safe=False,
                threat_type="Known malware signature",
                message="File matches a known malware signature",
            )

    return ScanResult(safe=True, message="All security scans passed")
