"""Token state and token endpoint models.

Contains the mutable token state owned by the lifecycle manager and the
parsed token endpoint response.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace

from pydantic import BaseModel, ConfigDict

DEFAULT_EXPIRES_IN = 3600


@dataclass
class TokenState:
    """Mutable token state for one QuickBooks company (realm).

    ``refresh_token`` and ``realm_id`` form the durable grant and are always
    set and cleared together. The access token is only usable together with a
    non-expired ``access_token_expiry``.
    """

    access_token: str | None = None
    access_token_expiry: float | None = None  # Unix timestamp
    refresh_token: str | None = None
    realm_id: str | None = None

    def is_access_token_valid(
        self, buffer_seconds: float = 60.0, now: float | None = None
    ) -> bool:
        """Check if the access token is valid with a refresh buffer.

        Args:
            buffer_seconds: Treat the token as expired this many seconds early
            now: Current Unix time, defaults to ``time.time()``
        """
        if not self.access_token or self.access_token_expiry is None:
            return False

        now = time.time() if now is None else now
        return now < (self.access_token_expiry - buffer_seconds)

    def has_grant(self) -> bool:
        """Check if both refresh token and realm id are present."""
        return bool(self.refresh_token and self.realm_id)

    def set_access_token(
        self, access_token: str, expires_in: int, now: float | None = None
    ) -> None:
        now = time.time() if now is None else now
        self.access_token = access_token
        self.access_token_expiry = now + expires_in

    def set_grant(self, refresh_token: str, realm_id: str) -> None:
        self.refresh_token = refresh_token
        self.realm_id = realm_id

    def seconds_remaining(self, now: float | None = None) -> int:
        if self.access_token_expiry is None:
            return 0
        now = time.time() if now is None else now
        return max(0, int(self.access_token_expiry - now))

    def clear(self) -> None:
        """Clear all token data."""
        self.access_token = None
        self.access_token_expiry = None
        self.refresh_token = None
        self.realm_id = None

    def snapshot(self) -> TokenState:
        """Return an independent copy safe to hand to callers."""
        return replace(self)


class TokenResponse(BaseModel):
    """Intuit token endpoint response (RFC 6749 Section 5).

    Intuit adds ``x_refresh_token_expires_in`` (refresh token lifetime) to
    the standard fields.
    """

    model_config = ConfigDict(extra="ignore")

    # Success response fields (RFC 6749 Section 5.1)
    access_token: str | None = None
    token_type: str = "bearer"
    expires_in: int = DEFAULT_EXPIRES_IN
    refresh_token: str | None = None
    x_refresh_token_expires_in: int | None = None
    id_token: str | None = None

    # Error response fields (RFC 6749 Section 5.2)
    error: str | None = None
    error_description: str | None = None

    def is_success(self) -> bool:
        """Check if token response indicates success."""
        return self.error is None and self.access_token is not None

    def is_error(self) -> bool:
        """Check if token response indicates an error."""
        return self.error is not None


@dataclass(frozen=True)
class RefreshResult:
    """Access token produced by a refresh (or by a forced re-authorization)."""

    access_token: str
    expires_in: int


@dataclass(frozen=True)
class AuthorizationResult:
    """Tokens produced by a completed interactive authorization flow."""

    access_token: str
    refresh_token: str
    realm_id: str
    expires_in: int
