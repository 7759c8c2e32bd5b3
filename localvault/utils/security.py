"""Security utilities for log sanitization and secret masking.

This module provides functions to prevent security vulnerabilities:
- Log injection: Sanitize provider- and user-supplied text before logging
- Sensitive data exposure: Mask tokens, verifiers and secrets in logs
"""

import re
from typing import Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

SENSITIVE_QUERY_KEYS = frozenset(
    {"token", "access_token", "refresh_token", "code", "code_verifier", "client_secret"}
)


def sanitize_log_message(msg: Union[str, bytes, int, float, None]) -> str:
    """Remove newlines and control characters from log messages.

    Prevents log injection attacks where a remote party injects newlines or
    control characters to corrupt log files or break log parsing.

    Args:
        msg: Message to sanitize (will be converted to string)

    Returns:
        Sanitized message with control characters removed

    Examples:
        >>> sanitize_log_message("Subject\\nmalicious\\nlog")
        'Subjectmaliciouslog'
    """
    if msg is None:
        return ""

    msg_str = str(msg)

    # Pattern matches: \n, \r, \t, and control chars (0x00-0x1f, 0x7f-0x9f)
    return re.sub(r'[\n\r\t\x00-\x1f\x7f-\x9f]', '', msg_str)


def mask_secret(secret: Union[str, None], show_chars: int = 4) -> str:
    """Mask a secret value for safe logging.

    Shows only the first and last few characters of a secret.

    Examples:
        >>> mask_secret("very_secret_client_id_12345")
        'very****...****2345'
        >>> mask_secret("short")
        '****'
    """
    if not secret or len(secret) <= show_chars * 2:
        return "****"
    return f"{secret[:show_chars]}****...****{secret[-show_chars:]}"


def redact_url(url: str) -> str:
    """Replace sensitive query parameter values in a URL with a mask."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [
        (key, "****" if key.lower() in SENSITIVE_QUERY_KEYS else value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(query)))
