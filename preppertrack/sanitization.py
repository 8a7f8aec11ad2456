"""Input sanitization utilities.

Every function here is total: malformed or unexpected input degrades to a
safe default (empty string, zero, empty list) instead of raising.
"""

import logging
import math
import re
from datetime import date, datetime, timezone
from html import escape, unescape
from html.parser import HTMLParser
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

from .models import FileUpload, ValidationResult

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
ALLOWED_UPLOAD_TYPES = ("application/json", "text/json")
ALLOWED_UPLOAD_EXTENSIONS = (".json",)

# Tags whose text content is dropped along with the tag itself
_FORBIDDEN_CONTENT_TAGS = {"script", "style", "iframe", "object", "embed"}

_DANGEROUS_CHARS_RE = re.compile(r"[<>'\"&]")
_DANGEROUS_PROTOCOLS_RE = re.compile(r"javascript:|data:|vbscript:", re.IGNORECASE)
_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_FLOAT_PREFIX_RE = re.compile(r"\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)
_UNSAFE_FILENAME_RE = re.compile(r"[^a-zA-Z0-9._-]")
_UNSAFE_SEARCH_RE = re.compile(r"[^\w\s.-]", re.ASCII)

_DATE_FORMATS = ("%m/%d/%Y", "%Y/%m/%d", "%d %b %Y", "%b %d, %Y")


class _TextExtractor(HTMLParser):
    """HTML parser that keeps text content and discards every tag."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self._parts: List[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in _FORBIDDEN_CONTENT_TAGS:
            self._skip_depth += 1

    def handle_endtag(self, tag):
        if tag in _FORBIDDEN_CONTENT_TAGS and self._skip_depth:
            self._skip_depth -= 1

    def handle_data(self, data):
        if not self._skip_depth:
            self._parts.append(data)

    def text(self) -> str:
        return "".join(self._parts)


def _strip_markup(value: str) -> str:
    parser = _TextExtractor()
    try:
        parser.feed(value)
        parser.close()
    except AssertionError:
        # Older parsers reject some malformed declarations
        logger.debug("Markup parser rejected input; falling back to tag regex")
        return unescape(re.sub(r"<[^>]*>?", "", value))
    return parser.text()


def sanitize_text(value: Any) -> str:
    """
    Sanitize plain text input.

    Removes all markup (keeping text content), then removes the characters
    ``< > ' " &`` and any ``javascript:``, ``data:`` or ``vbscript:``
    substrings regardless of case.

    Args:
        value: Arbitrary input value.

    Returns:
        The sanitized, trimmed string; ``""`` for non-string input.
    """
    if not isinstance(value, str) or not value:
        return ""

    text = _DANGEROUS_CHARS_RE.sub("", _strip_markup(value))
    # Removal can splice a new protocol together ("javajavascript:script:")
    while True:
        cleaned = _DANGEROUS_PROTOCOLS_RE.sub("", text)
        if cleaned == text:
            break
        text = cleaned
    return text.strip()


def _parse_float_prefix(text: str) -> float:
    match = _FLOAT_PREFIX_RE.match(text)
    if not match:
        return 0
    try:
        parsed = float(match.group(0))
    except (OverflowError, ValueError):
        return 0
    return parsed if math.isfinite(parsed) else 0


def sanitize_number(value: Any) -> float:
    """Return a finite number for ``value``, or ``0``."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else 0
    if isinstance(value, str):
        return _parse_float_prefix(sanitize_text(value))
    return 0


def sanitize_email(value: Any) -> str:
    """Return the sanitized address if it looks like ``local@domain.tld``, else ``""``."""
    sanitized = sanitize_text(value)
    if sanitized and _EMAIL_RE.fullmatch(sanitized):
        return sanitized
    return ""


def sanitize_url(value: Any) -> str:
    """Return the URL if it is a well-formed http(s) URL, else ``""``."""
    sanitized = sanitize_text(value)
    if not sanitized:
        return ""
    try:
        parts = urlsplit(sanitized)
    except ValueError:
        return ""
    if parts.scheme in ("http", "https") and parts.netloc:
        return parts.geturl()
    return ""


def _format_datetime(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.date().isoformat()


def _parse_date_string(text: str) -> Optional[str]:
    candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return _format_datetime(datetime.fromisoformat(candidate))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def sanitize_date(value: Any) -> str:
    """
    Normalize a date to ``YYYY-MM-DD``.

    Args:
        value: A ``date``/``datetime`` or a date string.

    Returns:
        The ISO date, or ``""`` if the input cannot be parsed.
    """
    if isinstance(value, datetime):
        return _format_datetime(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        sanitized = sanitize_text(value)
        if sanitized:
            return _parse_date_string(sanitized) or ""
    return ""


def sanitize_string_array(value: Any) -> List[str]:
    """Sanitize every element of a list of strings, dropping empty results."""
    if not isinstance(value, (list, tuple)):
        return []
    sanitized = (sanitize_text(item) for item in value)
    return [item for item in sanitized if item]


def sanitize_json_data(data: Any) -> Any:
    """
    Recursively sanitize a JSON-compatible value tree.

    Strings go through ``sanitize_text``, numbers through ``sanitize_number``,
    booleans and ``None`` pass through. Object keys are sanitized as well and
    entries whose key sanitizes to ``""`` are dropped.
    """
    if data is None or isinstance(data, bool):
        return data
    if isinstance(data, str):
        return sanitize_text(data)
    if isinstance(data, (int, float)):
        return sanitize_number(data)
    if isinstance(data, (list, tuple)):
        return [sanitize_json_data(item) for item in data]
    if isinstance(data, dict):
        sanitized = {}
        for key, value in data.items():
            sanitized_key = sanitize_text(key if isinstance(key, str) else str(key))
            if sanitized_key:
                sanitized[sanitized_key] = sanitize_json_data(value)
        return sanitized
    return data


def sanitize_file_name(value: Any) -> str:
    """Reduce a file name to ``[A-Za-z0-9._-]``, at most 255 characters."""
    name = _UNSAFE_FILENAME_RE.sub("_", sanitize_text(value))
    name = re.sub(r"_{2,}", "_", name).strip("_")
    return name[:255]


def sanitize_search_query(value: Any) -> str:
    """Restrict a search query to word characters, whitespace, dots and hyphens."""
    query = _UNSAFE_SEARCH_RE.sub("", sanitize_text(value)).strip()
    return query[:100]


def escape_html(text: str) -> str:
    """Escape HTML entities for safe display."""
    return escape(text if isinstance(text, str) else "", quote=True)


def validate_file_upload(upload: FileUpload) -> ValidationResult:
    """
    Validate a file selected for import.

    Checks run in order and the first failure is returned.

    Args:
        upload: The file descriptor (name, size, declared MIME type).

    Returns:
        A ValidationResult with the first failing check's message.
    """
    if upload.size > MAX_UPLOAD_BYTES:
        return ValidationResult(False, "File size exceeds 10MB limit")

    if upload.type not in ALLOWED_UPLOAD_TYPES:
        return ValidationResult(False, "Only JSON files are allowed")

    lowered = (upload.name or "").lower()
    dot = lowered.rfind(".")
    extension = lowered[dot:] if dot >= 0 else lowered
    if extension not in ALLOWED_UPLOAD_EXTENSIONS:
        return ValidationResult(False, "Invalid file extension")

    if not sanitize_file_name(upload.name):
        return ValidationResult(False, "Invalid file name")

    return ValidationResult(True)


def _optional_number(value: Any) -> Optional[float]:
    return sanitize_number(value) if value else None


def _optional_text(value: Any) -> Optional[str]:
    return sanitize_text(value) if value else None


def sanitize_inventory_item(item: Any) -> Optional[Dict[str, Any]]:
    """Field-wise sanitization of a stored inventory item dict."""
    if not isinstance(item, dict):
        return None
    sanitized = {
        "id": sanitize_text(item.get("id")),
        "name": sanitize_text(item.get("name")),
        "category": sanitize_text(item.get("category")),
        "quantity": sanitize_number(item.get("quantity")),
        "unit": sanitize_text(item.get("unit")),
        "expirationDate": sanitize_date(item.get("expirationDate")),
        "storageLocation": sanitize_text(item.get("storageLocation")),
        "caloriesPerUnit": _optional_number(item.get("caloriesPerUnit")),
        "usageRatePerPersonPerDay": sanitize_number(item.get("usageRatePerPersonPerDay")),
        "cost": _optional_number(item.get("cost")),
        "notes": _optional_text(item.get("notes")),
        "dateAdded": sanitize_date(item.get("dateAdded")),
        "lastUpdated": sanitize_date(item.get("lastUpdated")),
    }
    return {key: value for key, value in sanitized.items() if value is not None}


def sanitize_household_member(member: Any) -> Optional[Dict[str, Any]]:
    """Field-wise sanitization of a stored household member dict."""
    if not isinstance(member, dict):
        return None
    sanitized = {
        "id": sanitize_text(member.get("id")),
        "name": sanitize_text(member.get("name")),
        "age": sanitize_number(member.get("age")),
        "activityLevel": sanitize_text(member.get("activityLevel")),
        "dailyCalories": sanitize_number(member.get("dailyCalories")),
        "dailyWaterLiters": sanitize_number(member.get("dailyWaterLiters")),
        "groupId": _optional_text(member.get("groupId")),
        "emergencyContact": _optional_text(member.get("emergencyContact")),
        "medicalConditions": sanitize_string_array(member.get("medicalConditions")),
        "dietaryRestrictions": sanitize_string_array(member.get("dietaryRestrictions")),
        "skills": sanitize_string_array(member.get("skills")),
        "responsibilities": sanitize_string_array(member.get("responsibilities")),
        "specialNeeds": sanitize_string_array(member.get("specialNeeds")),
    }
    return {key: value for key, value in sanitized.items() if value is not None}
