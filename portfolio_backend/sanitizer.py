"""
Input sanitization for request payloads.

Two passes run over every string field. The strip pass removes markup and a
fixed denylist of SQL metacharacters/command tokens. The reject pass is a
pure predicate: it reports values that are too long, contain NUL characters
or look like a whole SQL statement, and the caller refuses the request.

The record store is only queried through SQLAlchemy expressions.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional

import bleach

MAX_STRING_LENGTH = 10000

STRIP_PATTERNS = (
    re.compile(r"--"),
    re.compile(r"/\*[\s\S]*?\*/"),
    re.compile(r";\s*$"),
    re.compile(r"xp_", re.IGNORECASE),
    re.compile(r"sp_", re.IGNORECASE),
    re.compile(r"\bEXEC\b", re.IGNORECASE),
    re.compile(r"\bEXECUTE\b", re.IGNORECASE),
)

SQL_STATEMENT_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\bSELECT\b.*\bFROM\b",
        r"\bINSERT\b.*\bINTO\b",
        r"\bUPDATE\b.*\bSET\b",
        r"\bDELETE\b.*\bFROM\b",
        r"\bDROP\b.*\bTABLE\b",
        r"\bCREATE\b.*\bTABLE\b",
        r"\bALTER\b.*\bTABLE\b",
        r"\bGRANT\b.*\bTO\b",
        r"\bREVOKE\b.*\bFROM\b",
        r"\bTRUNCATE\b.*\bTABLE\b",
    )
)

# Patterns worth a log line; matching never alters or rejects the request.
SUSPICIOUS_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\.\.",
        r"<script",
        r"union.*select",
        r"insert.*into",
        r"delete.*from",
        r"update.*set",
        r"drop.*table",
        r"create.*table",
        r"alter.*table",
        r"grant.*to",
        r"javascript:",
        r"data:",
        r"vbscript:",
        r"--",
        r"/\*",
        r"xp_",
        r"sp_",
    )
)


class UnsafeInput(ValueError):
    """Raised when a field fails the reject pass."""

    def __init__(self, field: str, reason: str):
        super().__init__(f"Field '{field}' {reason}")
        self.field = field
        self.reason = reason


def strip_markup(value: str) -> str:
    """Remove HTML tags and comments, keeping their text content."""
    if "<" not in value:
        return value
    return bleach.clean(
        value, tags=set(), attributes={}, strip=True, strip_comments=True
    )


def strip_sql_tokens(value: str) -> str:
    for pattern in STRIP_PATTERNS:
        value = pattern.sub("", value)
    return value.strip()


def sanitize_value(value: str) -> str:
    return strip_sql_tokens(strip_markup(value))


def find_violation(value: str) -> Optional[str]:
    """Return why ``value`` must be rejected, or None when it is acceptable."""
    if len(value) > MAX_STRING_LENGTH:
        return "exceeds the maximum allowed length"
    if "\0" in value:
        return "contains invalid characters"
    if any(pattern.search(value) for pattern in SQL_STATEMENT_PATTERNS):
        return "contains disallowed patterns"
    return None


def sanitize_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """
    Run both passes over the string values of ``fields``.

    Returns a new dict; the input is never mutated. Raises UnsafeInput on
    the first field that fails the reject pass.
    """
    cleaned: dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, str):
            value = sanitize_value(value)
            reason = find_violation(value)
            if reason:
                raise UnsafeInput(field=str(key), reason=reason)
        cleaned[key] = value
    return cleaned


def suspicious_matches(*texts: str) -> list[str]:
    """Return the sources of the suspicious patterns found in any of ``texts``."""
    return [
        pattern.pattern
        for pattern in SUSPICIOUS_PATTERNS
        if any(pattern.search(text) for text in texts if text)
    ]
