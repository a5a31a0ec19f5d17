"""
Utility for formatting credentials for display in logs.

OAuth tokens are never written to logs or the terminal in full; only the
last 6 characters are shown so that users can tell tokens apart.
"""

from typing import Optional


def format_credential_for_display(token: Optional[str]) -> str:
    """
    Format a bearer token for display in logs.

    Args:
        token: The token string, or None

    Returns:
        A display-safe string representation of the token

    Examples:
        >>> format_credential_for_display("sk-ant-REDACTED")
        "...abcdef"
        >>> format_credential_for_display("abc")
        "...***"
    """
    if not token:
        return "<none>"
    if len(token) <= 8:
        return "...***"
    return f"...{token[-6:]}"
