"""Tests for the Intuit token endpoint client.

High-impact tests covering the provider-call boundary:
- Authorization code exchange and refresh request encoding
- Decoding of provider errors into typed exceptions
- Revocation
- HTTP-level errors and malformed responses
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from qbo_auth.models.errors import (
    AuthorizationExchangeError,
    InvalidGrantError,
    RevocationError,
    TransientRefreshError,
)
from qbo_auth.services.tokens import IntuitTokenClient

TOKEN_ENDPOINT = "https://auth.example.com/oauth2/v1/tokens/bearer"
REVOKE_ENDPOINT = "https://auth.example.com/oauth2/tokens/revoke"


def make_response(status_code, body=None, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    return response


class TestExchangeCode:
    """Test authorization code to token exchange."""

    @pytest.fixture(autouse=True)
    def setup(self, credentials):
        # Arrange
        self.client = IntuitTokenClient(credentials, http_client=AsyncMock())
        self.http = self.client._http_client

    async def test_successful_exchange(self):
        # Arrange
        self.http.post.return_value = make_response(
            200,
            {
                "access_token": "access-xyz",
                "token_type": "bearer",
                "expires_in": 3600,
                "refresh_token": "refresh-abc",
                "x_refresh_token_expires_in": 8726400,
            },
        )

        # Act
        token_response = await self.client.exchange_code(TOKEN_ENDPOINT, "code-123")

        # Assert
        assert token_response.is_success()
        assert token_response.access_token == "access-xyz"
        assert token_response.refresh_token == "refresh-abc"
        assert token_response.expires_in == 3600
        assert token_response.x_refresh_token_expires_in == 8726400

        self.http.post.assert_awaited_once()
        call_args = self.http.post.call_args
        assert call_args[0][0] == TOKEN_ENDPOINT

        form_data = call_args[1]["data"]
        assert form_data == {
            "grant_type": "authorization_code",
            "code": "code-123",
            "redirect_uri": "http://localhost:8000/callback",
        }

        headers = call_args[1]["headers"]
        assert headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert headers["Accept"] == "application/json"

        auth = call_args[1]["auth"]
        assert isinstance(auth, httpx.BasicAuth)

    async def test_expires_in_defaults_to_one_hour(self):
        # Arrange
        self.http.post.return_value = make_response(
            200, {"access_token": "access-xyz", "refresh_token": "refresh-abc"}
        )

        # Act
        token_response = await self.client.exchange_code(TOKEN_ENDPOINT, "code-123")

        # Assert
        assert token_response.expires_in == 3600

    async def test_oauth_error_raises_exchange_error(self):
        # Arrange
        self.http.post.return_value = make_response(
            400,
            {"error": "invalid_grant", "error_description": "Code expired"},
            headers={"intuit_tid": "1-abc"},
        )

        # Act & Assert
        with pytest.raises(AuthorizationExchangeError) as exc_info:
            await self.client.exchange_code(TOKEN_ENDPOINT, "expired")

        assert "invalid_grant" in str(exc_info.value)
        assert exc_info.value.intuit_tid == "1-abc"

    async def test_missing_refresh_token_raises_exchange_error(self):
        # Arrange
        self.http.post.return_value = make_response(200, {"access_token": "a"})

        # Act & Assert
        with pytest.raises(AuthorizationExchangeError, match="refresh_token"):
            await self.client.exchange_code(TOKEN_ENDPOINT, "code-123")

    async def test_network_error_raises_exchange_error(self):
        # Arrange
        self.http.post.side_effect = httpx.ConnectError("Connection failed")

        # Act & Assert
        with pytest.raises(AuthorizationExchangeError):
            await self.client.exchange_code(TOKEN_ENDPOINT, "code-123")

    async def test_non_json_success_raises_exchange_error(self):
        # Arrange
        self.http.post.return_value = make_response(200, ValueError("Not JSON"))

        # Act & Assert
        with pytest.raises(AuthorizationExchangeError):
            await self.client.exchange_code(TOKEN_ENDPOINT, "code-123")


class TestRefresh:
    """Test refresh and the invalid_grant / transient split."""

    @pytest.fixture(autouse=True)
    def setup(self, credentials):
        self.client = IntuitTokenClient(credentials, http_client=AsyncMock())
        self.http = self.client._http_client

    async def test_successful_refresh(self):
        # Arrange
        self.http.post.return_value = make_response(
            200,
            {
                "access_token": "new-access",
                "expires_in": 3600,
                "refresh_token": "new-refresh",
            },
        )

        # Act
        token_response = await self.client.refresh(TOKEN_ENDPOINT, "refresh-abc")

        # Assert
        assert token_response.access_token == "new-access"
        assert token_response.refresh_token == "new-refresh"

        form_data = self.http.post.call_args[1]["data"]
        assert form_data == {
            "grant_type": "refresh_token",
            "refresh_token": "refresh-abc",
        }

    async def test_invalid_grant_raises_invalid_grant_error(self):
        # Arrange
        self.http.post.return_value = make_response(
            400, {"error": "invalid_grant", "error_description": "Token revoked"}
        )

        # Act & Assert
        with pytest.raises(InvalidGrantError, match="Token revoked"):
            await self.client.refresh(TOKEN_ENDPOINT, "revoked")

    @pytest.mark.parametrize(
        "response",
        [
            make_response(503, ValueError("<html>Service Unavailable</html>")),
            make_response(500, {"error": "server_error"}),
            make_response(401, {"error": "invalid_client"}),
            make_response(200, {"token_type": "bearer"}),
        ],
    )
    async def test_other_failures_are_transient(self, response):
        # Arrange
        self.http.post.return_value = response

        # Act & Assert
        with pytest.raises(TransientRefreshError):
            await self.client.refresh(TOKEN_ENDPOINT, "refresh-abc")

    async def test_network_error_is_transient(self):
        # Arrange
        self.http.post.side_effect = httpx.ReadTimeout("timed out")

        # Act & Assert
        with pytest.raises(TransientRefreshError):
            await self.client.refresh(TOKEN_ENDPOINT, "refresh-abc")


class TestRevoke:
    """Test remote revocation."""

    @pytest.fixture(autouse=True)
    def setup(self, credentials):
        self.client = IntuitTokenClient(credentials, http_client=AsyncMock())
        self.http = self.client._http_client

    async def test_successful_revoke_posts_json_token(self):
        # Arrange
        self.http.post.return_value = make_response(200, {})

        # Act
        await self.client.revoke(REVOKE_ENDPOINT, "refresh-abc")

        # Assert
        call_args = self.http.post.call_args
        assert call_args[0][0] == REVOKE_ENDPOINT
        assert call_args[1]["json"] == {"token": "refresh-abc"}

    async def test_rejected_revoke_raises_revocation_error(self):
        # Arrange
        self.http.post.return_value = make_response(400, {"error": "invalid_token"})

        # Act & Assert
        with pytest.raises(RevocationError):
            await self.client.revoke(REVOKE_ENDPOINT, "refresh-abc")

    async def test_network_error_raises_revocation_error(self):
        # Arrange
        self.http.post.side_effect = httpx.ConnectError("Connection failed")

        # Act & Assert
        with pytest.raises(RevocationError):
            await self.client.revoke(REVOKE_ENDPOINT, "refresh-abc")


class TestOwnedClient:
    async def test_close_only_closes_owned_client(self, credentials):
        # Arrange
        shared = AsyncMock()
        client = IntuitTokenClient(credentials, http_client=shared)

        # Act
        await client.close()

        # Assert
        shared.aclose.assert_not_awaited()
