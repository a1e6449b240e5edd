"""Security utilities for the authorization flow.

Provides CSRF state generation and validation, and masking of secrets before
they reach the logs.
"""

from __future__ import annotations

import secrets
import string

from qbo_auth.models.errors import CsrfMismatchError


def generate_state() -> str:
    """Generate a cryptographically secure state parameter.

    The state parameter provides CSRF protection by ensuring the callback
    matches the original authorization request. A new one is issued for
    every flow.

    Returns:
        Cryptographically secure random state string (32 characters)
    """
    alphabet = string.ascii_letters + string.digits + "-._~"
    return "".join(secrets.choice(alphabet) for _ in range(32))


def validate_state(expected: str, actual: str | None) -> None:
    """Validate state parameter matches expected value.

    Args:
        expected: State parameter from original authorization request
        actual: State parameter from callback URL

    Raises:
        CsrfMismatchError: If the state is missing or does not match
    """
    if not actual:
        raise CsrfMismatchError("OAuth callback missing state parameter")
    if not secrets.compare_digest(expected.encode(), actual.encode()):
        raise CsrfMismatchError("OAuth CSRF state mismatch")


def mask_secret(value: str | None, visible: int = 4) -> str:
    """Mask all but the first *visible* characters of a secret."""
    if not value:
        return "<none>"
    if len(value) <= visible:
        return "*" * len(value)
    return f"{value[:visible]}****"
