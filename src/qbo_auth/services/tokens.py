"""Intuit token endpoint client.

Implements the RFC 6749 token endpoint interactions (code exchange and
refresh) and RFC 7009 revocation. This is the only place raw provider error
payloads are inspected; callers only ever see the typed errors from
``qbo_auth.models.errors``.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from qbo_auth.models.config import ClientCredentials
from qbo_auth.models.errors import (
    AuthorizationExchangeError,
    InvalidGrantError,
    RevocationError,
    TransientRefreshError,
)
from qbo_auth.models.tokens import TokenResponse
from qbo_auth.services.security import mask_secret

logger = logging.getLogger(__name__)

INVALID_GRANT = "invalid_grant"


async def log_intuit_tid(response: httpx.Response) -> None:
    """httpx response hook logging Intuit's troubleshooting transaction id."""
    tid = response.headers.get("intuit_tid")
    if tid:
        request = response.request
        logger.info(
            f"[QBO] intuit_tid={tid} {request.method} {request.url} "
            f"-> {response.status_code}"
        )


def _intuit_tid(response: httpx.Response) -> str | None:
    tid = response.headers.get("intuit_tid")
    return tid if isinstance(tid, str) else None


class IntuitTokenClient:
    """Performs token exchange, refresh and revocation against Intuit.

    Client authentication uses HTTP Basic with the app's client id and
    secret. Token requests are form-encoded as RFC 6749 requires.
    """

    def __init__(
        self,
        credentials: ClientCredentials,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        """Initialize the token client.

        Args:
            credentials: Registered client credentials
            http_client: Shared HTTP client; one is created when omitted
            timeout: HTTP request timeout in seconds
        """
        self.credentials = credentials
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=timeout, event_hooks={"response": [log_intuit_tid]}
        )

    @property
    def _auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(
            self.credentials.client_id, self.credentials.client_secret
        )

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }

    async def exchange_code(self, token_endpoint: str, code: str) -> TokenResponse:
        """Exchange an authorization code for access and refresh tokens.

        Implements RFC 6749 Section 4.1.3 - Access Token Request.

        Raises:
            AuthorizationExchangeError: If the exchange fails for any reason
        """
        logger.debug(f"Exchanging authorization code at {token_endpoint}")

        form_data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.credentials.redirect_uri,
        }

        try:
            response = await self._http_client.post(
                token_endpoint, data=form_data, headers=self._headers, auth=self._auth
            )
        except httpx.HTTPError as e:
            raise AuthorizationExchangeError(
                f"HTTP error during token exchange: {e}"
            ) from e

        tid = _intuit_tid(response)
        try:
            token_response = self._parse_token_response(response)
        except ValueError as e:
            raise AuthorizationExchangeError(
                f"Invalid token response format: {e}", intuit_tid=tid
            ) from e

        if not token_response.is_success():
            raise AuthorizationExchangeError(
                f"Token exchange failed with {response.status_code}: "
                f"{token_response.error or 'missing access_token'}"
                + (
                    f" - {token_response.error_description}"
                    if token_response.error_description
                    else ""
                ),
                intuit_tid=tid,
            )
        if not token_response.refresh_token:
            raise AuthorizationExchangeError(
                "Token response missing refresh_token", intuit_tid=tid
            )

        logger.info("Token exchange successful")
        return token_response

    async def refresh(self, token_endpoint: str, refresh_token: str) -> TokenResponse:
        """Refresh an access token using a refresh token.

        Implements RFC 6749 Section 6 - Refreshing an Access Token.

        Raises:
            InvalidGrantError: The refresh token is expired or revoked
            TransientRefreshError: Any other failure; the caller may retry
        """
        logger.debug(
            f"Refreshing access token at {token_endpoint} "
            f"(refresh_token={mask_secret(refresh_token)})"
        )

        form_data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }

        try:
            response = await self._http_client.post(
                token_endpoint, data=form_data, headers=self._headers, auth=self._auth
            )
        except httpx.HTTPError as e:
            raise TransientRefreshError(
                f"HTTP error during token refresh: {e}"
            ) from e

        tid = _intuit_tid(response)
        try:
            token_response = self._parse_token_response(response)
        except ValueError as e:
            raise TransientRefreshError(
                f"Invalid token response format ({response.status_code}): {e}",
                intuit_tid=tid,
            ) from e

        if token_response.error == INVALID_GRANT:
            raise InvalidGrantError(
                "Refresh token is invalid or expired"
                + (
                    f": {token_response.error_description}"
                    if token_response.error_description
                    else ""
                ),
                intuit_tid=tid,
            )
        if not token_response.is_success():
            raise TransientRefreshError(
                f"Token refresh failed with {response.status_code}: "
                f"{token_response.error or 'missing access_token'}",
                intuit_tid=tid,
            )

        logger.debug("Token refresh successful")
        return token_response

    async def revoke(self, revocation_endpoint: str, token: str) -> None:
        """Revoke a refresh (or access) token.

        Raises:
            RevocationError: If the provider did not confirm revocation
        """
        logger.debug(f"Revoking token {mask_secret(token)} at {revocation_endpoint}")

        try:
            response = await self._http_client.post(
                revocation_endpoint,
                json={"token": token},
                headers={"Accept": "application/json"},
                auth=self._auth,
            )
        except httpx.HTTPError as e:
            raise RevocationError(f"HTTP error during token revocation: {e}") from e

        if response.status_code != 200:
            raise RevocationError(
                f"Token revocation failed with {response.status_code}",
                intuit_tid=_intuit_tid(response),
            )

    def _parse_token_response(self, response: httpx.Response) -> TokenResponse:
        """Parse token endpoint response into TokenResponse.

        Handles both successful responses (200) and error responses (400+)
        according to RFC 6749 Section 5. Error responses without a JSON body
        get a synthetic ``error`` naming the HTTP status.

        Raises:
            ValueError: If a 200 response cannot be parsed
        """
        try:
            response_data = response.json()
        except ValueError:
            if response.status_code == 200:
                raise
            response_data = None

        if not isinstance(response_data, dict):
            if response.status_code == 200:
                raise ValueError("Token response body is not a JSON object")
            return TokenResponse(error=f"http_{response.status_code}")

        try:
            token_response = TokenResponse.model_validate(response_data)
        except ValidationError as e:
            raise ValueError(str(e)) from e

        if response.status_code != 200 and token_response.error is None:
            token_response = token_response.model_copy(
                update={"error": f"http_{response.status_code}"}
            )

        if token_response.is_error():
            logger.warning(
                f"Token endpoint returned {response.status_code}: "
                f"{token_response.error} - "
                f"{token_response.error_description or 'No description provided'}"
            )
        return token_response

    async def close(self) -> None:
        """Close the HTTP client if this token client created it."""
        if self._owns_client:
            await self._http_client.aclose()
