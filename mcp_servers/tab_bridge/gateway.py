from __future__ import annotations

import asyncio
import contextlib
import errno
import logging
import threading
import time
from concurrent.futures import Future
from typing import Any

from .config import BridgeConfig
from .rpc_session import RpcSession

logger = logging.getLogger("mcp.tab_bridge.gateway")


def _import_websockets():
    try:
        import websockets  # type: ignore[import-not-found]

        return websockets
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError("The tab bridge gateway requires the 'websockets' package (pip install websockets).") from exc


class _WsConnection:
    """Adapts a server-side websocket to the session's blocking ``send``/``close`` contract."""

    def __init__(self, ws: Any, loop: asyncio.AbstractEventLoop, *, send_timeout: float = 10.0) -> None:
        self._ws = ws
        self._loop = loop
        self._send_timeout = send_timeout

    @property
    def remote(self) -> Any:
        return getattr(self._ws, "remote_address", None)

    def send(self, payload: str) -> None:
        asyncio.run_coroutine_threadsafe(self._ws.send(payload), self._loop).result(timeout=self._send_timeout)

    def close(self) -> None:
        # Scheduled, not awaited: the session must never block on a closing socket.
        asyncio.run_coroutine_threadsafe(self._ws.close(), self._loop)


class BridgeGateway:
    """Local WebSocket endpoint the page agent connects to.

    Design goals:
    - Sync API for callers (``call`` returns a Future, ``request`` blocks).
    - Async server internally (runs in a dedicated daemon thread).
    - One live page connection: every new socket supersedes the previous one.
    - Resilient bind: try adjacent ports, then keep retrying with backoff until stopped.
    """

    def __init__(self, config: BridgeConfig | None = None, *, session: RpcSession | None = None) -> None:
        self.config = config or BridgeConfig()
        self.host = self.config.host
        self.port = int(self.config.port)
        self._configured_port = int(self.port)
        self.session = session or RpcSession(default_timeout=self.config.rpc_timeout)

        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._connected = threading.Event()

        self._server: Any | None = None
        self._bind_error: str | None = None
        self._connections_total = 0

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def start(self, *, wait_timeout: float = 5.0, require_listening: bool = True) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop.clear()
        with self._lock:
            self._bind_error = None

        t = threading.Thread(target=self._run_thread, name="tab-bridge-gateway", daemon=True)
        self._thread = t
        t.start()

        deadline = time.time() + max(0.05, float(wait_timeout))
        while time.time() < deadline:
            with self._lock:
                server = self._server
            if server is not None:
                return
            if not t.is_alive():
                break
            time.sleep(0.05)

        with self._lock:
            bind_error = self._bind_error
            server = self._server
        if server is not None:
            return
        if not t.is_alive():
            raise RuntimeError(f"Gateway thread died during startup on {self.host}:{self.port}")
        if require_listening:
            raise RuntimeError(f"Gateway bind failed on {self.host}:{self.port}: {bind_error or 'timed out'}")
        # Fail-soft: the gateway thread keeps retrying to bind.

    def stop(self, *, timeout: float = 2.0) -> None:
        self._stop.set()
        self.session.close()
        loop = self._loop
        if loop is not None:
            with contextlib.suppress(Exception):
                asyncio.run_coroutine_threadsafe(self._shutdown_async(), loop).result(timeout=timeout)
        t = self._thread
        if t is not None:
            t.join(timeout=timeout)
        self._connected.clear()
        logger.info("gateway stopped")

    def status(self) -> dict[str, Any]:
        with self._lock:
            server = self._server
            bind_error = self._bind_error
            total = self._connections_total
        return {
            "listening": server is not None,
            "host": self.host,
            "port": self.port,
            "configuredPort": self._configured_port,
            "connected": self.session.is_connected,
            "state": self.session.state,
            "pending": len(self.session.pending_ids()),
            "connectionsTotal": total,
            **({"threadAlive": True} if self._thread is not None and self._thread.is_alive() else {}),
            **({"bindError": bind_error} if bind_error else {}),
        }

    def is_connected(self) -> bool:
        return self.session.is_connected

    def wait_for_connection(self, *, timeout: float = 5.0) -> bool:
        """Block until a page agent is connected or timeout."""
        return bool(self._connected.wait(timeout=max(0.0, float(timeout))))

    # ─────────────────────────────────────────────────────────────────────────
    # Requests
    # ─────────────────────────────────────────────────────────────────────────

    def call(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> Future:
        return self.session.call(method, params, timeout=timeout)

    def request(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> Any:
        return self.session.request(method, params, timeout=timeout)

    # ─────────────────────────────────────────────────────────────────────────
    # Internals (async)
    # ─────────────────────────────────────────────────────────────────────────

    def _port_candidates(self) -> list[int]:
        base = self._configured_port
        span = max(0, int(self.config.port_span))
        return [p for p in range(base, base + span + 1) if 1 <= p <= 65535]

    def _run_thread(self) -> None:
        asyncio.run(self._run_async())

    async def _run_async(self) -> None:
        websockets = _import_websockets()
        loop = asyncio.get_running_loop()
        self._loop = loop

        async def _handler(ws):  # type: ignore[no-untyped-def]
            conn = _WsConnection(ws, loop)
            self.session.attach(conn)
            with self._lock:
                self._connections_total += 1
            self._connected.set()
            logger.info("page agent connected remote=%s", conn.remote)
            try:
                async for raw in ws:
                    self.session.handle_message(raw)
            except websockets.exceptions.ConnectionClosed as exc:
                logger.info("page agent connection dropped: %s", exc)
            finally:
                if self.session.detach(conn):
                    self._connected.clear()
                    logger.info("page agent disconnected remote=%s", conn.remote)

        backoff_s = 0.25
        max_backoff_s = 5.0
        try:
            while not self._stop.is_set():
                with self._lock:
                    has_server = self._server is not None
                if has_server:
                    await asyncio.sleep(0.25)
                    continue

                server = None
                bind_error: str | None = None
                for port in self._port_candidates():
                    try:
                        server = await websockets.serve(_handler, self.host, int(port), max_size=8_000_000, ping_interval=None)
                    except OSError as exc:
                        bind_error = str(exc)
                        if getattr(exc, "errno", None) in {errno.EADDRINUSE, errno.EACCES}:
                            continue
                        break
                    with self._lock:
                        self._server = server
                        self.port = int(port)
                        self._bind_error = None
                    logger.info("gateway listening on %s:%s", self.host, port)
                    break

                if server is not None:
                    backoff_s = 0.25
                    continue

                with self._lock:
                    self._bind_error = bind_error or "unknown bind error"
                logger.warning("gateway bind failed: %s (retry in %.2fs)", bind_error, backoff_s)
                await asyncio.sleep(backoff_s)
                backoff_s = min(backoff_s * 1.6, max_backoff_s)
        finally:
            await self._shutdown_async()

    async def _shutdown_async(self) -> None:
        with self._lock:
            srv = self._server
            self._server = None
        if srv is not None:
            srv.close()
            with contextlib.suppress(Exception):
                await srv.wait_closed()
