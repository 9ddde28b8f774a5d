"""
Venue Connectors - Secure Logging Utilities.

============================================================
SECURITY REQUIREMENTS
============================================================
1. NEVER log raw passwords, API keys, secrets or tokens
2. Mask sensitive headers (Authorization, X-Session-ID, ...)
3. Mask sensitive body fields before a request is logged

============================================================
"""

import logging
import re
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


# ============================================================
# SENSITIVE DATA PATTERNS
# ============================================================

SENSITIVE_HEADERS = {
    "authorization",
    "x-api-key",
    "x-session-id",
    "cookie",
    "set-cookie",
}

SENSITIVE_PARAMS = {
    "password",
    "apikey",
    "api_key",
    "apisecret",
    "api_secret",
    "secret",
    "client_secret",
    "token",
    "access_token",
    "accesstoken",
    "refresh_token",
    "refreshtoken",
    "sessionid",
    "session_id",
}

# Long opaque strings (tokens, keys) inside otherwise harmless values
TOKEN_PATTERN = re.compile(r"[A-Za-z0-9_\-]{32,}")


# ============================================================
# MASKING FUNCTIONS
# ============================================================

def mask_value(value: str, show_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only the first few chars.

    Args:
        value: Value to mask
        show_chars: Number of chars to keep

    Returns:
        Masked value
    """
    if not value or len(value) <= show_chars * 2:
        return "***"
    return f"{value[:show_chars]}...***"


def mask_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Return a copy of headers with sensitive values masked."""
    if not headers:
        return {}
    return {
        key: mask_value(str(value)) if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def mask_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Return a copy of a request/response body with sensitive
    fields masked, recursing into nested dicts.
    """
    if not params:
        return {}

    masked: Dict[str, Any] = {}
    for key, value in params.items():
        if key.lower() in SENSITIVE_PARAMS:
            masked[key] = "***" if value else value
        elif isinstance(value, dict):
            masked[key] = mask_params(value)
        elif isinstance(value, str) and TOKEN_PATTERN.search(value):
            masked[key] = TOKEN_PATTERN.sub("***", value)
        else:
            masked[key] = value
    return masked
