"""Short-lived local HTTP listener for the OAuth redirect.

Serves a Starlette app with uvicorn on a socket bound up front, so a busy
port surfaces as ``CallbackListenerError`` instead of a server crash.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from html import escape

import uvicorn
from starlette.applications import Starlette
from starlette.responses import HTMLResponse

from qbo_auth.models.errors import CallbackListenerError

logger = logging.getLogger(__name__)

_PAGE = """<!DOCTYPE html>
<html>
  <head><title>{title}</title></head>
  <body style="display: flex; flex-direction: column; justify-content: center;
               align-items: center; height: 100vh; margin: 0;
               font-family: Arial, sans-serif; background-color: {background};">
    <h2 style="color: {color};">{heading}</h2>
    <p>{message}</p>
  </body>
</html>
"""


def success_page() -> HTMLResponse:
    return HTMLResponse(
        _PAGE.format(
            title="QuickBooks - Connected",
            background="#f5f5f5",
            color="#2E8B57",
            heading="&#10003; Successfully connected to QuickBooks!",
            message="You can close this window now.",
        ),
        status_code=200,
    )


def csrf_failure_page() -> HTMLResponse:
    return HTMLResponse(
        _PAGE.format(
            title="QuickBooks - Error",
            background="#fff0f0",
            color="#d32f2f",
            heading="CSRF validation failed",
            message="OAuth state mismatch. Please try connecting again.",
        ),
        status_code=403,
    )


def denied_page(reason: str) -> HTMLResponse:
    return HTMLResponse(
        _PAGE.format(
            title="QuickBooks - Not connected",
            background="#fff0f0",
            color="#d32f2f",
            heading="QuickBooks connection was not authorized",
            message=escape(reason),
        ),
        status_code=400,
    )


def error_page() -> HTMLResponse:
    return HTMLResponse(
        _PAGE.format(
            title="QuickBooks - Error",
            background="#fff0f0",
            color="#d32f2f",
            heading="Error connecting to QuickBooks",
            message="Please check the console for more details.",
        ),
        status_code=500,
    )


class CallbackListener:
    """Runs *app* on ``host:port`` until ``stop()`` is called.

    ``stop()`` is idempotent and always releases the port.
    """

    def __init__(self, app: Starlette, host: str = "127.0.0.1", port: int = 8000):
        self.app = app
        self.host = host
        self.port = port
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None
        self._socket: socket.socket | None = None

    @property
    def address(self) -> tuple[str, int] | None:
        """Bound ``(host, port)``, or None when not listening."""
        if self._socket is None:
            return None
        return self._socket.getsockname()[:2]

    @property
    def serving(self) -> asyncio.Future[None]:
        """Completes when the server stops, for any reason."""
        if self._task is None:
            raise CallbackListenerError("Callback listener not started")
        return self._task

    async def start(self) -> None:
        """Bind the port and start serving.

        Raises:
            CallbackListenerError: If the port cannot be bound or the server
                stops before it is ready
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as e:
            sock.close()
            raise CallbackListenerError(
                f"Cannot listen for OAuth callback on {self.host}:{self.port}: {e}"
            ) from e
        self._socket = sock

        config = uvicorn.Config(
            app=self.app, log_level="warning", lifespan="off", access_log=False
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._task.done():
                await self.stop()
                raise CallbackListenerError(
                    f"Callback listener on {self.host}:{self.port} stopped "
                    "during startup"
                )
            await asyncio.sleep(0.01)

        logger.debug(f"Callback listener started on {self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop serving and release the port."""
        if self._server is not None:
            self._server.should_exit = True
        if self._task is not None and not self._task.done():
            try:
                await self._task
            except Exception as e:
                logger.warning(f"Callback listener stopped with error: {e}")
        if self._socket is not None:
            self._socket.close()
            self._socket = None
            logger.debug(f"Callback listener on {self.host}:{self.port} closed")
