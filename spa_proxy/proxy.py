"""
Reverse proxy in front of the esbuild serve facility with SPA fallback.

Every request is forwarded to the upstream. When the upstream answers 404,
or the request is for ``/``, the client gets the assembled document instead
so client-side routing can resolve deep links. Anything else is streamed
back unchanged.
"""

import asyncio
import contextlib
import logging
import socket
from typing import Optional

import httpx
import uvicorn
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response, StreamingResponse
from starlette.routing import Route

from spa_proxy.bundler import UpstreamTarget

logger = logging.getLogger(__name__)

ROOT_PATH = "/"

PROXIED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class ProxyStartError(RuntimeError):
    """The proxy could not start listening."""


class _ProxyServer(uvicorn.Server):
    """uvicorn server whose shutdown is driven by the dev server, not by signals."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


def _bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


def _has_body(request: Request) -> bool:
    return "content-length" in request.headers or "transfer-encoding" in request.headers


def _upstream_path(request: Request) -> str:
    """Path and query exactly as received, appended to the upstream origin by the caller."""
    raw_path = request.scope.get("raw_path") or request.url.path.encode("utf-8")
    # Some servers include the query string in raw_path
    path = raw_path.decode("latin-1").split("?", 1)[0]
    query = request.scope.get("query_string", b"").decode("latin-1")
    return f"{path}?{query}" if query else path


class FallbackProxy:
    """Forwards to a single upstream and substitutes ``document`` on 404 or ``/``."""

    def __init__(
        self,
        upstream: UpstreamTarget,
        document: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.upstream = upstream
        self.document = document.encode("utf-8")
        self._client = httpx.AsyncClient(
            transport=transport,
            timeout=None,
            follow_redirects=False,
            trust_env=False,
        )
        self.app = Starlette(
            routes=[Route("/{path:path}", self.handle, methods=PROXIED_METHODS)],
        )
        self._server: Optional[_ProxyServer] = None
        self._serve_task: Optional[asyncio.Task] = None
        self.port: Optional[int] = None

    def fallback_response(self) -> Response:
        return Response(self.document, status_code=200, headers={"content-type": "text/html"})

    async def handle(self, request: Request) -> Response:
        upstream_request = self._client.build_request(
            request.method,
            f"{self.upstream.base_url}{_upstream_path(request)}",
            headers=request.headers.raw,
            content=request.stream() if _has_body(request) else None,
        )
        try:
            upstream = await self._client.send(upstream_request, stream=True)
        except httpx.TransportError as exc:
            logger.warning("Upstream request %s %s failed: %r", request.method, request.url.path, exc)
            return PlainTextResponse("Bad gateway: upstream unavailable", status_code=502)

        if upstream.status_code == 404 or request.url.path == ROOT_PATH:
            # Read the body so the upstream connection goes back to the pool
            await upstream.aread()
            await upstream.aclose()
            logger.debug("Serving fallback document for %s", request.url.path)
            return self.fallback_response()

        response = StreamingResponse(
            upstream.aiter_raw(),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        response.raw_headers = [(name.lower(), value) for name, value in upstream.headers.raw]
        return response

    # ── Server lifecycle ─────────────────────────────────────────────────────

    async def start(self, port: int, host: str = "0.0.0.0") -> None:
        """Bind the listening socket and serve until :meth:`stop` is called."""
        try:
            sock = _bind_socket(host, port)
        except OSError as exc:
            raise ProxyStartError(f"Could not bind {host}:{port}: {exc}") from exc
        self.port = sock.getsockname()[1]

        config = uvicorn.Config(
            self.app,
            log_config=None,
            lifespan="off",
            # Long-lived streams (esbuild's live-reload events) must not hold up exit
            timeout_graceful_shutdown=1,
            # Passed-through responses carry only the upstream headers
            server_header=False,
            date_header=False,
        )
        self._server = _ProxyServer(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._serve_task.done():
                sock.close()
                task, self._serve_task = self._serve_task, None
                task.result()
                raise ProxyStartError("Proxy server exited during startup")
            await asyncio.sleep(0.05)
        logger.info("Dev server is available on port %s", self.port)

    def stop(self) -> None:
        """Stop accepting connections. In-flight requests are not drained."""
        if self._server is not None:
            self._server.should_exit = True
            self._server.force_exit = True

    async def wait_closed(self) -> None:
        """Wait for the listening socket to close, then release the upstream client."""
        if self._serve_task is not None:
            await self._serve_task
        await self._client.aclose()
