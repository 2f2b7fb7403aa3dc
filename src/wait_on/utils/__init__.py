"""Shared utility modules.

This package provides pure helpers for:
- Duration parsing and formatting (milliseconds, unit-suffixed strings)
- Secret sanitization for log output
- Logging setup with run correlation IDs
"""

from wait_on.utils.durations import (
    format_duration_ms,
    parse_duration,
    parse_optional_duration,
)
from wait_on.utils.sanitization import (
    REDACTED,
    is_sensitive_field,
    sanitize_url,
    sanitize_value,
)

__all__ = [
    # Durations
    "format_duration_ms",
    "parse_duration",
    "parse_optional_duration",
    # Sanitization
    "REDACTED",
    "is_sensitive_field",
    "sanitize_url",
    "sanitize_value",
]
