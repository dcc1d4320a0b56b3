"""
Log sanitization utilities to prevent log injection attacks.

Object names and label values come from user-authored resources, so they are
cleaned before being interpolated into log lines.
"""

import re
from typing import Any


def sanitize_for_log(value: Any, max_length: int = 100) -> str:
    """
    Sanitize a value for safe logging.

    Removes control characters, newlines, and other potentially dangerous characters
    that could be used for log injection attacks.

    Args:
        value: The value to sanitize
        max_length: Maximum length of the output (default 100)

    Returns:
        Sanitized string safe for logging
    """
    str_value = str(value)

    # Remove control characters, newlines, carriage returns
    sanitized = re.sub(r"[\x00-\x1f\x7f-\x9f\r\n\t]", "", str_value)

    # Limit length to prevent log flooding
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "..."

    return sanitized


def sanitize_object_key(key: Any) -> str:
    """
    Sanitize a "namespace/name" object key for logging.

    Kubernetes names only contain lowercase alphanumerics, '-' and '.', so
    anything else is dropped.

    Args:
        key: The key or name to sanitize

    Returns:
        Sanitized key
    """
    sanitized = re.sub(r"[^a-zA-Z0-9./_-]", "", str(key))

    # namespace (63) + "/" + name (253)
    return sanitized[:317]
