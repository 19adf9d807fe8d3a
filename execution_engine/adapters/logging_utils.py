"""
Exchange Adapter - Secure Logging Utilities.

============================================================
PURPOSE
============================================================
Credential masking for adapter request logging.

============================================================
SECURITY REQUIREMENTS
============================================================
1. NEVER log raw API keys or secrets
2. Mask sensitive headers (X-MBX-APIKEY)
3. Mask signatures in request parameters

============================================================
"""

import re
from typing import Any, Dict


SENSITIVE_HEADERS = {
    "authorization",
    "x-api-key",
    "x-mbx-apikey",
}

SENSITIVE_PARAMS = {
    "apikey",
    "api_key",
    "secret",
    "secretkey",
    "secret_key",
    "signature",
}

_HMAC_PATTERN = re.compile(r"[a-f0-9]{64}", re.IGNORECASE)


def mask_value(value: str, show_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only first few chars.

    Args:
        value: Value to mask
        show_chars: Number of chars to show at start
    """
    if not value or len(value) <= show_chars:
        return "***"
    return f"{value[:show_chars]}...***"


def mask_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Mask sensitive headers."""
    if not headers:
        return {}
    return {
        key: mask_value(str(value)) if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def mask_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """Mask sensitive parameters, including stray HMAC digests."""
    if not params:
        return {}
    masked: Dict[str, Any] = {}
    for key, value in params.items():
        if key.lower() in SENSITIVE_PARAMS:
            masked[key] = mask_value(str(value)) if value else value
        elif isinstance(value, str) and _HMAC_PATTERN.search(value):
            masked[key] = _HMAC_PATTERN.sub("***HMAC***", value)
        else:
            masked[key] = value
    return masked
