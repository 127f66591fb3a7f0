"""
Input sanitization and upload validation.

Free-text values are cleaned before schema validation: control characters are
removed, the text is NFKC-normalized, and any HTML markup is stripped. Mapping
keys that could alter object prototypes in JavaScript clients
(``__proto__``, ``constructor``, ``prototype``) are dropped.

Uploaded files are checked against the configured MIME allowlist, their magic
bytes, the size cap, filename rules and a scan for embedded script markers.
"""

import logging
import re
import unicodedata
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning

from revengers.config import settings
from revengers.logging_config import log_security_event

logger = logging.getLogger(__name__)

DANGEROUS_KEYS = frozenset({"__proto__", "constructor", "prototype"})

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
_ANGLE_BRACKETS_RE = re.compile(r"[<>]")
# Decoded entities can hide another layer of markup
_MAX_SANITIZE_PASSES = 5

MAGIC_BYTES = {
    "image/jpeg": [b"\xff\xd8\xff"],
    "image/png": [b"\x89PNG"],
    "image/gif": [b"GIF8"],
    "image/webp": [b"RIFF"],
}

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "webp", "gif"}
SAFE_FILENAME_RE = re.compile(r"^[a-zA-Z0-9._-]+$")
MAX_FILENAME_LENGTH = 100
SCAN_WINDOW_BYTES = 1024

SUSPICIOUS_MARKERS = (
    b"<script",
    b"javascript:",
    b"eval(",
    b"document.write",
    b"window.location",
    b"<iframe",
    b"<object",
    b"<embed",
)

_SQL_INJECTION_PATTERNS = [
    re.compile(r"(\b(union|select|insert|update|delete|drop|create|alter|exec|execute)\b.*\b(from|into|table|database|where)\b)", re.IGNORECASE),
    re.compile(r"('\s*(or|and)\s*'?\d*'?\s*=\s*'?\d*)", re.IGNORECASE),
    re.compile(r"(--|#|/\*|\*/)"),
]
_XSS_PATTERNS = [
    re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"<iframe", re.IGNORECASE),
]
_PATH_TRAVERSAL_PATTERNS = [
    re.compile(r"\.\./"),
    re.compile(r"\.\.\\"),
    re.compile(r"%2e%2e%2f", re.IGNORECASE),
    re.compile(r"%2e%2e%5c", re.IGNORECASE),
]
_SUSPICIOUS_AGENT_TOKENS = ("curl", "wget")


def strip_html(value: str) -> str:
    """
    Remove every tag, keeping only text content.

    Entities decode into text, so the pass repeats until nothing changes and
    any angle bracket left over (``&lt;b&gt;`` decodes to ``<b>``) is removed.
    """
    for _ in range(_MAX_SANITIZE_PASSES):
        if "<" not in value and "&" not in value:
            break
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", MarkupResemblesLocatorWarning)
            soup = BeautifulSoup(value, "html.parser")
        for node in soup(["script", "style"]):
            node.decompose()
        text = soup.get_text()
        if text == value:
            break
        value = text
    return _ANGLE_BRACKETS_RE.sub("", value)


def sanitize_string(value: str) -> str:
    """
    Clean a free-text value.

    Args:
        value: Raw string from the request

    Returns:
        The string without control characters or HTML, NFKC-normalized and trimmed
    """
    cleaned = value
    for _ in range(_MAX_SANITIZE_PASSES):
        previous = cleaned
        cleaned = _CONTROL_CHARS_RE.sub("", cleaned)
        cleaned = unicodedata.normalize("NFKC", cleaned)
        cleaned = strip_html(cleaned)
        if cleaned == previous:
            break
    return cleaned.strip()


def sanitize_object(value: Any, _path: str = "") -> Any:
    """
    Recursively sanitize strings and drop dangerous mapping keys.

    Blocked keys are reported on the security log.
    """
    if isinstance(value, str):
        return sanitize_string(value)
    if isinstance(value, dict):
        cleaned: Dict[str, Any] = {}
        for key, item in value.items():
            if isinstance(key, str) and key in DANGEROUS_KEYS:
                log_security_event("DANGEROUS_PROPERTY_BLOCKED", property=key, path=_path or "$")
                continue
            cleaned[key] = sanitize_object(item, f"{_path}.{key}" if _path else str(key))
        return cleaned
    if isinstance(value, list):
        return [sanitize_object(item, _path) for item in value]
    return value


def sanitize_filename(filename: Optional[str]) -> str:
    """
    Reduce an uploaded filename to a safe basename.

    Path components are discarded, unsafe characters become ``_`` and leading
    dots or dashes are removed.
    """
    if not filename:
        return ""
    name = re.split(r"[\\/]", filename)[-1]
    name = re.sub(r"[^a-zA-Z0-9._-]", "_", name)
    name = re.sub(r"\.{2,}", ".", name)
    name = name.lstrip(".-")
    return name[:MAX_FILENAME_LENGTH]


def matches_magic_bytes(data: bytes, content_type: str) -> bool:
    signatures = MAGIC_BYTES.get(content_type)
    if not signatures:
        return False
    if content_type == "image/webp":
        return data[:4] == b"RIFF" and data[8:12] == b"WEBP"
    return any(data.startswith(sig) for sig in signatures)


def _validate_filename(filename: str, errors: List[str]) -> None:
    if not SAFE_FILENAME_RE.match(filename):
        errors.append("Filename contains invalid characters")
    parts = filename.split(".")
    if len(parts) > 2:
        errors.append("Multiple file extensions are not allowed")
    extension = parts[-1].lower() if len(parts) > 1 else ""
    if extension not in ALLOWED_EXTENSIONS:
        errors.append(f"File extension '{extension}' is not allowed")


@dataclass
class FileValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    sanitized_filename: str = ""


def validate_file_upload(
    data: bytes,
    content_type: Optional[str],
    filename: Optional[str],
    max_size: Optional[int] = None,
    allowed_types: Optional[Iterable[str]] = None,
) -> FileValidationResult:
    """
    Validate an uploaded image before any processing.

    Args:
        data: Raw file bytes
        content_type: MIME type declared by the client
        filename: Original filename from the multipart part
        max_size: Byte cap; defaults to MAX_FILE_SIZE_MB
        allowed_types: MIME allowlist; defaults to ALLOWED_FILE_TYPES

    Returns:
        FileValidationResult; ``errors`` lists every failed rule
    """
    max_size = settings.max_file_size if max_size is None else max_size
    allowed = set(settings.allowed_file_types if allowed_types is None else allowed_types)
    errors: List[str] = []

    if not data:
        errors.append("File is empty")
    elif len(data) > max_size:
        errors.append(f"File size exceeds maximum of {max_size // (1024 * 1024)}MB")

    if not content_type or content_type not in allowed:
        errors.append(f"Invalid file type '{content_type}'")
    elif data and not matches_magic_bytes(data, content_type):
        errors.append("File content does not match declared type")

    if not filename:
        errors.append("Filename is required")
    else:
        _validate_filename(filename, errors)

    head = data[:SCAN_WINDOW_BYTES].lower()
    if any(marker in head for marker in SUSPICIOUS_MARKERS):
        errors.append("File contains suspicious content")
        log_security_event("SUSPICIOUS_UPLOAD", filename=filename, content_type=content_type)

    return FileValidationResult(
        valid=not errors,
        errors=errors,
        sanitized_filename=sanitize_filename(filename),
    )


def detect_suspicious_request(
    method: str,
    path: str,
    query: str = "",
    headers: Optional[Dict[str, str]] = None,
    body: Optional[str] = None,
) -> Set[str]:
    """
    Classify a request against known attack patterns. Never blocks.

    Returns:
        Subset of {"sql_injection", "xss_attempt", "path_traversal",
        "suspicious_user_agent"}
    """
    tags: Set[str] = set()
    haystack = " ".join(part for part in (path, query, body or "") if part)

    if any(p.search(haystack) for p in _SQL_INJECTION_PATTERNS):
        tags.add("sql_injection")
    if any(p.search(haystack) for p in _XSS_PATTERNS):
        tags.add("xss_attempt")
    if any(p.search(f"{path} {query}") for p in _PATH_TRAVERSAL_PATTERNS):
        tags.add("path_traversal")

    user_agent = (headers or {}).get("user-agent", "")
    lowered = user_agent.lower()
    if len(user_agent) < 10 or any(token in lowered for token in _SUSPICIOUS_AGENT_TOKENS):
        tags.add("suspicious_user_agent")

    if tags:
        logger.debug(f"Suspicious request {method} {path}: {sorted(tags)}")
    return tags
