"""Shared utility functions for the Gemini Live client.

This module contains reusable helper functions used across the codebase:
- Template rendering (_render_error_template)
- JSON helpers (_safe_json_loads, _pretty_json)
- Type coercion (_coerce_bool)
- Log redaction for inline media and credentials
- Retry-After parsing

These utilities have minimal dependencies and can be used by any module.
"""

from __future__ import annotations

import datetime
import email.utils
import json
import re
from typing import Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .config import DEFAULT_API_ERROR_TEMPLATE

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

_TEMPLATE_IF_TOKEN_RE = re.compile(r"\{\{\s*(#if\s+(\w+)|/if)\s*\}\}")
_REDACTED_MARKER = "[REDACTED]"
_INLINE_DATA_KEYS = frozenset({"inlineData", "inline_data"})

# -----------------------------------------------------------------------------
# Template Rendering
# -----------------------------------------------------------------------------

def _template_value_present(value: Any) -> bool:
    """Return True when a placeholder value should be rendered."""
    if value is None:
        return False
    if isinstance(value, str):
        return value != ""
    if isinstance(value, (list, tuple, set, dict)):
        return bool(value)
    if isinstance(value, (int, float)):
        return True
    return bool(value)


def _render_error_template(template: str, values: dict[str, Any]) -> str:
    """Render an error template, honoring {{#if name}} ... {{/if}} guards.

    A line containing a placeholder whose value is absent is dropped.
    """
    if not template:
        template = DEFAULT_API_ERROR_TEMPLATE

    rendered_lines: list[str] = []
    condition_stack: list[bool] = []

    def _conditions_active() -> bool:
        return all(condition_stack) if condition_stack else True

    for raw_line in template.splitlines():
        last_index = 0
        line_parts: list[str] = []

        for match in _TEMPLATE_IF_TOKEN_RE.finditer(raw_line):
            segment = raw_line[last_index:match.start()]
            if segment and _conditions_active():
                line_parts.append(segment)

            token = match.group(1) or ""
            if token.startswith("#if"):
                condition_stack.append(bool(values.get(match.group(2) or "")))
            elif condition_stack:
                condition_stack.pop()
            last_index = match.end()

        tail_segment = raw_line[last_index:]
        if tail_segment and _conditions_active():
            line_parts.append(tail_segment)

        if not line_parts:
            # Lines made only of guard tokens vanish; genuinely blank lines survive.
            if raw_line.strip() or not _conditions_active():
                continue
            rendered_lines.append("")
            continue

        line = "".join(line_parts)
        drop_line = False
        for name, value in values.items():
            placeholder = f"{{{name}}}"
            if placeholder in line:
                if not _template_value_present(value):
                    drop_line = True
                line = line.replace(placeholder, "" if value is None else str(value))
        if not drop_line:
            rendered_lines.append(line)
    return "\n".join(rendered_lines).strip()


# -----------------------------------------------------------------------------
# JSON Helpers
# -----------------------------------------------------------------------------

def _pretty_json(value: Any) -> str:
    """Return a human-readable JSON string or an empty string when not applicable."""
    if value is None:
        return ""
    if isinstance(value, (str, bytes)):
        text = value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value
        return text.strip()
    try:
        return json.dumps(value, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def _safe_json_loads(payload: Optional[str | bytes]) -> Any:
    """Return parsed JSON or None without raising."""
    if not payload:
        return None
    try:
        return json.loads(payload)
    except (TypeError, ValueError):
        return None


# -----------------------------------------------------------------------------
# Type Coercion
# -----------------------------------------------------------------------------

def _coerce_bool(value: Any) -> Optional[bool]:
    """Best-effort coercion of truthy string/int flags into booleans."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
    if isinstance(value, int):
        return bool(value)
    return None


def _normalize_optional_str(value: Any) -> Optional[str]:
    """Convert arbitrary input into a trimmed string or None."""
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    value = value.strip()
    return value or None


# -----------------------------------------------------------------------------
# Redaction
# -----------------------------------------------------------------------------

def _redact_payload_blobs(value: Any, *, max_chars: int = 256) -> Any:
    """Return a copy of ``value`` with inline base64 media truncated.

    Keeps DEBUG frame logs readable when image parts are sent inline.
    """
    max_chars = max(64, min(int(max_chars), 8192))
    keep = max(8, min(64, max_chars // 4))

    def _redact_blob(data: str) -> str:
        if len(data) <= max_chars:
            return data
        return f"{data[:keep]}…{_REDACTED_MARKER}({len(data)} chars)…"

    def _walk(obj: Any, parent_key: Optional[str] = None) -> Any:
        if isinstance(obj, dict):
            return {k: _walk(v, k) for k, v in obj.items()}
        if isinstance(obj, (list, tuple)):
            return type(obj)(_walk(v, parent_key) for v in obj)
        if isinstance(obj, str) and parent_key == "data":
            return _redact_blob(obj)
        return obj

    def _walk_root(obj: Any) -> Any:
        if isinstance(obj, dict):
            return {
                k: (_walk(v) if k in _INLINE_DATA_KEYS else _walk_root(v))
                for k, v in obj.items()
            }
        if isinstance(obj, (list, tuple)):
            return type(obj)(_walk_root(v) for v in obj)
        return obj

    return _walk_root(value)


def _redact_url_key(url: str) -> str:
    """Mask the ``key`` query parameter of ``url`` for logs and error details."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [(k, _REDACTED_MARKER if k == "key" else v) for k, v in parse_qsl(parts.query, keep_blank_values=True)]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query, safe="[]"), parts.fragment))


# -----------------------------------------------------------------------------
# HTTP Utilities
# -----------------------------------------------------------------------------

def _retry_after_seconds(value: Optional[str]) -> Optional[float]:
    """Convert a Retry-After header value (seconds or HTTP date) into seconds."""
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    try:
        return max(0.0, float(trimmed))
    except ValueError:
        pass
    try:
        dt = email.utils.parsedate_to_datetime(trimmed)
    except (TypeError, ValueError, OverflowError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    now = datetime.datetime.now(datetime.timezone.utc)
    return max(0.0, (dt - now).total_seconds())
