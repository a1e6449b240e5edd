"""Authorization flow models.

Contains models for authorization requests and callback handling.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlencode


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization request parameters for the consent redirect."""

    authorization_endpoint: str
    client_id: str
    redirect_uri: str
    scope: str
    state: str

    def build_authorization_url(self) -> str:
        """Build the complete authorization URL."""
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "scope": self.scope,
            "redirect_uri": self.redirect_uri,
            "state": self.state,
        }

        return f"{self.authorization_endpoint}?{urlencode(params)}"


@dataclass(frozen=True)
class AuthorizationResponse:
    """Query parameters the provider appends to the redirect URI."""

    code: str | None = None
    state: str | None = None
    realm_id: str | None = None
    error: str | None = None
    error_description: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None
