"""Interactive OAuth 2.0 authorization code flow.

Runs a short-lived local listener, sends the user to Intuit's consent page,
validates the CSRF state on the redirect and exchanges the returned code for
tokens. The new grant is persisted before the success page is served.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import HTMLResponse, Response
from starlette.routing import Route

from qbo_auth.models.config import DEFAULT_SCOPE, ClientCredentials
from qbo_auth.models.discovery import DiscoveryDocument
from qbo_auth.models.errors import (
    AuthorizationDeniedError,
    AuthorizationExchangeError,
    AuthorizationTimeoutError,
    CallbackListenerError,
    CsrfMismatchError,
)
from qbo_auth.models.flow import AuthorizationRequest, AuthorizationResponse
from qbo_auth.models.tokens import AuthorizationResult
from qbo_auth.primitives.callback import (
    CallbackListener,
    csrf_failure_page,
    denied_page,
    error_page,
    success_page,
)
from qbo_auth.primitives.discovery import DiscoveryResolver
from qbo_auth.primitives.singleflight import SingleFlight
from qbo_auth.services.security import generate_state, mask_secret, validate_state
from qbo_auth.services.store import TokenStore
from qbo_auth.services.tokens import IntuitTokenClient

logger = logging.getLogger(__name__)


class Listener(Protocol):
    """What the flow needs from a callback listener."""

    @property
    def serving(self) -> asyncio.Future[None]: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


ListenerFactory = Callable[[Starlette, str, int], Listener]


@dataclass
class AuthorizationSession:
    """State of one in-progress authorization flow."""

    state: str
    discovery: DiscoveryDocument
    outcome: asyncio.Future[AuthorizationResult]
    completed: bool = field(default=False)


class AuthorizationFlow:
    """Orchestrates the browser-based authorization code flow.

    Only one flow runs at a time: concurrent ``run()`` calls join the flow
    already in progress and receive its result.
    """

    def __init__(
        self,
        credentials: ClientCredentials,
        discovery: DiscoveryResolver,
        token_client: IntuitTokenClient,
        store: TokenStore,
        *,
        scope: str = DEFAULT_SCOPE,
        host: str = "127.0.0.1",
        port: int = 8000,
        callback_path: str = "/callback",
        timeout: float | None = 300.0,
        close_delay: float = 1.0,
        open_browser: Callable[[str], Any] = webbrowser.open,
        listener_factory: ListenerFactory = CallbackListener,
    ):
        """Initialize the authorization flow.

        Args:
            credentials: Registered client credentials
            discovery: Resolver for the provider endpoints
            token_client: Client used for the code exchange
            store: Where the new refresh token and realm id are persisted
            scope: OAuth scope to request
            host: Interface the callback listener binds to
            port: Port the callback listener binds to
            callback_path: Path of the redirect URI
            timeout: Seconds to wait for the callback; None waits forever
            close_delay: Seconds to keep serving after a terminal response
            open_browser: Called with the authorization URL
            listener_factory: Builds the listener for the callback app
        """
        self.credentials = credentials
        self.discovery = discovery
        self.token_client = token_client
        self.store = store
        self.scope = scope
        self.host = host
        self.port = port
        self.callback_path = callback_path
        self.timeout = timeout
        self.close_delay = close_delay
        self._open_browser = open_browser
        self._listener_factory = listener_factory
        self._single_flight: SingleFlight[AuthorizationResult] = SingleFlight(
            "authorization flow"
        )

    @property
    def in_flight(self) -> bool:
        return self._single_flight.in_flight

    async def run(self) -> AuthorizationResult:
        """Run the interactive flow, or join the one already in progress.

        Raises:
            CsrfMismatchError: The callback state did not match
            AuthorizationDeniedError: The user or provider refused consent
            AuthorizationExchangeError: The code exchange failed
            AuthorizationTimeoutError: No callback arrived in time
            CallbackListenerError: The listener failed to bind or crashed
        """
        return await self._single_flight.run(self._run_flow)

    def create_app(self, session: AuthorizationSession) -> Starlette:
        """Create the Starlette application serving the redirect URI."""

        async def handle_callback(request: Request) -> Response:
            return await self._handle_callback(request, session)

        return Starlette(
            routes=[Route(self.callback_path, handle_callback, methods=["GET"])]
        )

    async def _run_flow(self) -> AuthorizationResult:
        discovery = await self.discovery.resolve()
        session = AuthorizationSession(
            state=generate_state(),
            discovery=discovery,
            outcome=asyncio.get_running_loop().create_future(),
        )

        listener = self._listener_factory(
            self.create_app(session), self.host, self.port
        )
        await listener.start()
        try:
            auth_url = AuthorizationRequest(
                authorization_endpoint=discovery.authorization_endpoint,
                client_id=self.credentials.client_id,
                redirect_uri=self.credentials.redirect_uri,
                scope=self.scope,
                state=session.state,
            ).build_authorization_url()

            logger.info(
                "Starting QuickBooks OAuth flow. A browser window should open; "
                f"if not, visit: {auth_url}"
            )
            await self._launch_browser(auth_url)

            return await self._wait_for_outcome(session, listener)
        finally:
            await listener.stop()

    async def _launch_browser(self, auth_url: str) -> None:
        try:
            opened = self._open_browser(auth_url)
            if inspect.isawaitable(opened):
                await opened
        except Exception as e:
            logger.warning(f"Could not open a browser ({e}); open the URL manually")

    async def _wait_for_outcome(
        self, session: AuthorizationSession, listener: Listener
    ) -> AuthorizationResult:
        serving = listener.serving
        done, _ = await asyncio.wait(
            {session.outcome, serving},
            timeout=self.timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if session.outcome in done:
            return session.outcome.result()

        if serving in done:
            cause = None if serving.cancelled() else serving.exception()
            raise CallbackListenerError(
                f"Callback listener stopped before a callback arrived: {cause}"
            ) from cause

        session.completed = True
        raise AuthorizationTimeoutError(
            f"No OAuth callback received within {self.timeout} seconds"
        )

    async def _handle_callback(
        self, request: Request, session: AuthorizationSession
    ) -> Response:
        if session.completed:
            return denied_page("This authorization request has already completed.")

        auth_response = self._parse_callback(request)

        # CSRF check strictly before anything else touches the callback
        try:
            validate_state(session.state, auth_response.state)
        except CsrfMismatchError as e:
            logger.error(f"Rejected OAuth callback: {e}")
            return self._finish(session, csrf_failure_page(), error=e)

        if auth_response.is_error():
            denied = AuthorizationDeniedError(
                auth_response.error or "unknown_error",
                auth_response.error_description,
            )
            logger.error(str(denied))
            return self._finish(
                session,
                denied_page(auth_response.error_description or denied.error),
                error=denied,
            )

        try:
            result = await self._exchange(session, auth_response)
        except Exception as e:
            logger.error(f"Error during token creation: {e}")
            return self._finish(session, error_page(), error=e, delay=0.0)

        logger.info(
            f"Connected to QuickBooks realm {result.realm_id} "
            f"(refresh_token={mask_secret(result.refresh_token)})"
        )
        return self._finish(session, success_page(), result=result)

    async def _exchange(
        self, session: AuthorizationSession, auth_response: AuthorizationResponse
    ) -> AuthorizationResult:
        if not auth_response.code:
            raise AuthorizationExchangeError("Callback missing authorization code")
        if not auth_response.realm_id:
            raise AuthorizationExchangeError("Callback missing realmId")

        token_response = await self.token_client.exchange_code(
            session.discovery.token_endpoint, auth_response.code
        )
        result = AuthorizationResult(
            access_token=token_response.access_token,
            refresh_token=token_response.refresh_token,
            realm_id=auth_response.realm_id,
            expires_in=token_response.expires_in,
        )

        self.store.save(refresh_token=result.refresh_token, realm_id=result.realm_id)
        return result

    def _finish(
        self,
        session: AuthorizationSession,
        response: HTMLResponse,
        *,
        result: AuthorizationResult | None = None,
        error: BaseException | None = None,
        delay: float | None = None,
    ) -> HTMLResponse:
        """Mark the session terminal and resolve it once the page is sent."""
        session.completed = True
        delay = self.close_delay if delay is None else delay

        async def resolve() -> None:
            await asyncio.sleep(delay)
            if session.outcome.done():
                return
            if error is not None:
                session.outcome.set_exception(error)
            else:
                session.outcome.set_result(result)

        response.background = BackgroundTask(resolve)
        return response

    def _parse_callback(self, request: Request) -> AuthorizationResponse:
        params = request.query_params
        return AuthorizationResponse(
            code=params.get("code"),
            state=params.get("state"),
            realm_id=params.get("realmId"),
            error=params.get("error"),
            error_description=params.get("error_description"),
        )
