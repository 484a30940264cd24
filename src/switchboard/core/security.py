"""Secret masking and size limits.

API keys reach Switchboard through environment variables and plugin settings;
these helpers keep them out of logs and error details, and cap the size of
provider replies and tool outputs fed back into agent conversations.
"""

from typing import Any

MAX_LLM_RESPONSE_LENGTH = 100_000  # 100KB per provider reply
MAX_TOOL_OUTPUT_LENGTH = 50_000  # 50KB per tool result returned to an agent

SENSITIVE_FIELD_NAMES = frozenset(
    {
        "password",
        "api_key",
        "apikey",
        "api-key",
        "secret",
        "token",
        "credential",
        "private",
        "bearer",
        "authorization",
    }
)

SENSITIVE_PREFIXES = (
    "sk-",
    "pk-",
    "bearer ",
    "token ",
    "secret_",
    "AIza",
)


def mask_api_key(api_key: str, visible_chars: int = 4) -> str:
    """Mask an API key for safe logging.

    Example:
        >>> mask_api_key("sk-1234567890abcdef")
        'sk-...cdef'
    """
    if not api_key:
        return "<empty>"

    if len(api_key) <= visible_chars + 4:
        return "*" * len(api_key)

    if "-" in api_key[:6]:
        prefix_end = api_key.index("-") + 1
        return f"{api_key[:prefix_end]}...{api_key[-visible_chars:]}"

    return f"...{api_key[-visible_chars:]}"


def is_sensitive_field(field_name: str) -> bool:
    """Return True if a field name suggests it holds a secret."""
    if not field_name:
        return False
    field_lower = field_name.lower()
    return any(sensitive in field_lower for sensitive in SENSITIVE_FIELD_NAMES)


def is_sensitive_value(value: Any) -> bool:
    """Return True if a string value looks like an API key or token."""
    if not isinstance(value, str):
        return False
    value_lower = value.lower()
    return any(value_lower.startswith(prefix.lower()) for prefix in SENSITIVE_PREFIXES)


def sanitize_for_logging(data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``data`` with secret-looking values masked.

    Example:
        >>> sanitize_for_logging({"api_key": "sk-secret123", "table": "Tasks"})
        {'api_key': '<REDACTED>', 'table': 'Tasks'}
    """
    result: dict[str, Any] = {}
    for key, value in data.items():
        if is_sensitive_field(key):
            result[key] = "<REDACTED>"
        elif isinstance(value, str) and is_sensitive_value(value):
            result[key] = mask_api_key(value)
        elif isinstance(value, dict):
            result[key] = sanitize_for_logging(value)
        else:
            result[key] = value
    return result


def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
    """Truncate ``text`` to ``max_length`` characters including ``suffix``."""
    if len(text) <= max_length:
        return text
    return text[: max_length - len(suffix)] + suffix
