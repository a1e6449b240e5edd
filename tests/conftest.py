import asyncio

import pytest

from qbo_auth.models.config import ClientCredentials, Environment
from qbo_auth.models.discovery import DiscoveryDocument


class FakeListener:
    """Listener stand-in that never binds a port.

    Tests drive the callback app directly through ``httpx.ASGITransport``.
    """

    def __init__(self, app, host="127.0.0.1", port=8000):
        self.app = app
        self.host = host
        self.port = port
        self.started = False
        self.stopped = False
        self._serving: asyncio.Future[None] = (
            asyncio.get_running_loop().create_future()
        )

    @property
    def serving(self) -> asyncio.Future[None]:
        return self._serving

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True
        if not self._serving.done():
            self._serving.cancel()

    def crash(self, error: Exception) -> None:
        self._serving.set_exception(error)


@pytest.fixture
def credentials() -> ClientCredentials:
    return ClientCredentials(
        client_id="client-456",
        client_secret="secret-789",
        redirect_uri="http://localhost:8000/callback",
        environment=Environment.SANDBOX,
    )


@pytest.fixture
def discovery_document() -> DiscoveryDocument:
    return DiscoveryDocument(
        authorization_endpoint="https://auth.example.com/connect/oauth2",
        token_endpoint="https://auth.example.com/oauth2/v1/tokens/bearer",
        revocation_endpoint="https://auth.example.com/oauth2/tokens/revoke",
    )


@pytest.fixture
def env_file(tmp_path):
    path = tmp_path / ".env"
    path.write_text(
        "# QuickBooks app\n"
        "QUICKBOOKS_CLIENT_ID=client-456\n"
        "QUICKBOOKS_CLIENT_SECRET=secret-789\n"
        "FOO=bar\n"
    )
    return path


@pytest.fixture
def listener_factory():
    """Factory for ``AuthorizationFlow`` recording every listener it builds."""
    created: list[FakeListener] = []

    def factory(app, host, port):
        listener = FakeListener(app, host, port)
        created.append(listener)
        return listener

    factory.created = created
    return factory
