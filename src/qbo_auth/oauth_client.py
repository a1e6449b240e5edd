"""QuickBooks OAuth 2.0 token lifecycle management.

Coordinates discovery, interactive authorization, token refresh and
revocation to keep a process authenticated across many API calls with user
interaction only on first connect or when the grant expires.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from qbo_auth.models.config import ClientCredentials, Environment, Settings
from qbo_auth.models.errors import (
    InvalidGrantError,
    NotAuthenticatedError,
    ReauthorizationError,
    TokenRefreshError,
    TransientRefreshError,
)
from qbo_auth.models.tokens import RefreshResult, TokenState
from qbo_auth.primitives.discovery import DiscoveryResolver
from qbo_auth.services.flow import AuthorizationFlow
from qbo_auth.services.security import mask_secret
from qbo_auth.services.store import TokenStore
from qbo_auth.services.tokens import IntuitTokenClient, log_intuit_tid

logger = logging.getLogger(__name__)

API_BASE_URLS: dict[Environment, str] = {
    Environment.SANDBOX: "https://sandbox-quickbooks.api.intuit.com",
    Environment.PRODUCTION: "https://quickbooks.api.intuit.com",
}


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential back-off for token refresh, without jitter."""

    max_attempts: int = 3
    initial_delay: float = 1.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the zero-based *attempt* failed."""
        return self.initial_delay * (2**attempt)


@dataclass(frozen=True)
class AuthenticatedHandle:
    """Ready-to-use credentials for the QuickBooks Online API.

    Bound to the access token that was current when it was issued; call
    ``authenticate()`` again for a fresh handle once it nears expiry.
    """

    access_token: str = field(repr=False)
    realm_id: str
    environment: Environment

    @property
    def is_sandbox(self) -> bool:
        return self.environment is Environment.SANDBOX

    @property
    def api_base_url(self) -> str:
        return API_BASE_URLS[self.environment]

    def company_url(self, path: str = "") -> str:
        """URL of a company-scoped API resource, or the company base URL."""
        base = f"{self.api_base_url}/v3/company/{self.realm_id}"
        path = path.strip("/")
        return f"{base}/{path}" if path else base

    def authorization_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
        }

    def create_http_client(self, timeout: float = 30.0) -> httpx.AsyncClient:
        """Create an HTTP client scoped to this company and token."""
        return httpx.AsyncClient(
            base_url=self.company_url(),
            headers=self.authorization_headers(),
            timeout=timeout,
            event_hooks={"response": [log_intuit_tid]},
        )


class QuickbooksAuthClient:
    """Keeps a process authenticated against QuickBooks Online.

    Owns the ``TokenState`` for one company. Authentication, refresh and
    disconnect are serialized through a single lock, so concurrent callers
    never observe a partially written state.

    Typical use::

        settings = Settings.load(".env")
        async with QuickbooksAuthClient.from_settings(settings) as auth:
            handle = await auth.authenticate()
    """

    EXPIRY_BUFFER_SECONDS = 60.0

    def __init__(
        self,
        credentials: ClientCredentials,
        store: TokenStore,
        *,
        refresh_token: str | None = None,
        realm_id: str | None = None,
        discovery: DiscoveryResolver | None = None,
        token_client: IntuitTokenClient | None = None,
        flow: AuthorizationFlow | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the lifecycle manager.

        Args:
            credentials: Registered client credentials
            store: Durable storage for the refresh token and realm id
            refresh_token: Previously stored refresh token, if any
            realm_id: Previously stored realm id, if any
            discovery: Endpoint resolver, defaults to one for the environment
            token_client: Token endpoint client
            flow: Interactive authorization flow
            retry_policy: Back-off policy for refresh
            clock: Returns the current Unix time
            sleep: Awaited between refresh attempts
        """
        self.credentials = credentials
        self.store = store
        self.discovery = discovery or DiscoveryResolver(credentials.environment)
        self.token_client = token_client or IntuitTokenClient(credentials)
        self.flow = flow or AuthorizationFlow(
            credentials, self.discovery, self.token_client, store
        )
        self.retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._sleep = sleep

        self._state = TokenState()
        if refresh_token and realm_id:
            self._state.set_grant(refresh_token, realm_id)
        elif refresh_token or realm_id:
            logger.warning(
                "Stored grant is incomplete (refresh token and realm id must both "
                "be set); a new authorization will be required"
            )
        self._handle: AuthenticatedHandle | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> QuickbooksAuthClient:
        """Build a fully wired client from ``Settings``."""
        credentials = settings.credentials
        store = TokenStore(settings.env_file)
        discovery = DiscoveryResolver(
            credentials.environment, timeout=settings.http_timeout
        )
        token_client = IntuitTokenClient(credentials, timeout=settings.http_timeout)
        flow = AuthorizationFlow(
            credentials,
            discovery,
            token_client,
            store,
            scope=settings.scope,
            host=settings.callback_host,
            port=settings.callback_port,
            callback_path=settings.callback_path,
            timeout=settings.authorization_timeout,
        )
        return cls(
            credentials,
            store,
            refresh_token=settings.refresh_token,
            realm_id=settings.realm_id,
            discovery=discovery,
            token_client=token_client,
            flow=flow,
            **kwargs,
        )

    @property
    def token_state(self) -> TokenState:
        """Copy of the current token state."""
        return self._state.snapshot()

    @property
    def is_authenticated(self) -> bool:
        return self._handle is not None

    async def authenticate(self) -> AuthenticatedHandle:
        """Return a handle bound to a valid access token.

        Runs the interactive flow when no grant is stored and refreshes the
        access token when it is missing or within the expiry buffer. Calls
        made while the token is still valid do no network activity.
        """
        async with self._lock:
            if not self._state.has_grant():
                await self._authorize()

            if not self._state.is_access_token_valid(
                self.EXPIRY_BUFFER_SECONDS, now=self._clock()
            ):
                await self._refresh()

            self._handle = AuthenticatedHandle(
                access_token=self._state.access_token,
                realm_id=self._state.realm_id,
                environment=self.credentials.environment,
            )
            return self._handle

    async def refresh_access_token(self) -> RefreshResult:
        """Obtain a new access token from the stored refresh token.

        Raises:
            TokenRefreshError: Every attempt in the retry budget failed
            ReauthorizationError: The grant was invalid and re-authorization
                failed
        """
        async with self._lock:
            return await self._refresh()

    def get_handle(self) -> AuthenticatedHandle:
        """Return the handle from the last successful ``authenticate()``.

        Raises:
            NotAuthenticatedError: If not authenticated
        """
        if self._handle is None:
            raise NotAuthenticatedError()
        return self._handle

    async def disconnect(self) -> None:
        """Revoke the grant and clear local state.

        Revocation failures are logged; local state is cleared regardless.
        """
        async with self._lock:
            refresh_token = self._state.refresh_token
            if not refresh_token:
                self._clear_local()
                return

            try:
                discovery = await self.discovery.resolve()
                await self.token_client.revoke(
                    discovery.revocation_endpoint, refresh_token
                )
                logger.info("Revoked QuickBooks refresh token")
            except Exception as e:
                logger.warning(
                    f"Error revoking token (clearing local state anyway): {e}"
                )

            self._clear_local()
            self.store.clear()
            logger.info("Disconnected from QuickBooks")

    async def close(self) -> None:
        """Close the HTTP clients."""
        await self.discovery.close()
        await self.token_client.close()

    async def __aenter__(self) -> QuickbooksAuthClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _authorize(self) -> None:
        """Run the interactive flow and adopt its tokens."""
        result = await self.flow.run()
        self._state.set_grant(result.refresh_token, result.realm_id)
        self._state.set_access_token(
            result.access_token, result.expires_in, now=self._clock()
        )

    async def _refresh(self) -> RefreshResult:
        if not self._state.refresh_token:
            await self._authorize()
            return self._current_result()

        discovery = await self.discovery.resolve()
        attempts = self.retry_policy.max_attempts
        last_error: TransientRefreshError | None = None

        for attempt in range(attempts):
            try:
                response = await self.token_client.refresh(
                    discovery.token_endpoint, self._state.refresh_token
                )
            except InvalidGrantError as e:
                logger.error(
                    "Refresh token is invalid/expired. Starting new OAuth flow..."
                )
                await self._recover_from_invalid_grant(e)
                return self._current_result()
            except TransientRefreshError as e:
                last_error = e
                if attempt < attempts - 1:
                    delay = self.retry_policy.delay_for(attempt)
                    logger.warning(
                        f"Token refresh attempt {attempt + 1} failed, "
                        f"retrying in {delay}s: {e}"
                    )
                    await self._sleep(delay)
                continue

            self._state.set_access_token(
                response.access_token, response.expires_in, now=self._clock()
            )
            if (
                response.refresh_token
                and response.refresh_token != self._state.refresh_token
            ):
                self._state.refresh_token = response.refresh_token
                self.store.save(refresh_token=response.refresh_token)
                logger.info(
                    "Persisted rotated refresh token "
                    f"{mask_secret(response.refresh_token)}"
                )

            logger.debug(
                f"Refreshed access token (expires in {response.expires_in}s)"
            )
            return RefreshResult(
                access_token=response.access_token, expires_in=response.expires_in
            )

        logger.error(f"Token refresh failed after {attempts} attempts: {last_error}")
        raise TokenRefreshError(attempts, last_error) from last_error

    async def _recover_from_invalid_grant(self, error: InvalidGrantError) -> None:
        self._clear_local()
        self.store.clear()
        try:
            await self._authorize()
        except Exception as reauth_error:
            raise ReauthorizationError(error, reauth_error) from reauth_error

    def _clear_local(self) -> None:
        self._state.clear()
        self._handle = None

    def _current_result(self) -> RefreshResult:
        return RefreshResult(
            access_token=self._state.access_token,
            expires_in=self._state.seconds_remaining(now=self._clock()),
        )
