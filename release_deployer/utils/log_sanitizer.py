"""
Log sanitization for values that come from the release feed.

Release tags and asset names are remote input; they are stripped of control
characters before being logged so a crafted name cannot forge log lines.
"""

import re
from typing import Any, Optional


def sanitize_for_log(value: Any, max_length: int = 100) -> str:
    """
    Sanitize a value for safe logging.

    Args:
        value: The value to sanitize
        max_length: Maximum length of the output (default 100)

    Returns:
        Sanitized string safe for logging
    """
    sanitized = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", str(value))

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "..."

    return sanitized


def mask_secret(secret: Optional[str], visible: int = 4) -> str:
    """Mask a token for display, keeping only its last few characters."""
    if not secret:
        return "<unset>"
    if len(secret) <= visible:
        return "*" * len(secret)
    return "*" * 8 + secret[-visible:]
