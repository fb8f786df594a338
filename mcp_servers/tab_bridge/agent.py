"""
Page-side agent: executes bridge requests against the attached tab.

``PageAgent`` answers every request with a tagged success or error response and never lets
an exception escape. ``AgentConnection`` connects an agent to a running gateway and serves
requests one at a time until stopped.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from .aria import Classifier, ReferenceTable, RoleTables, SnapshotBuilder
from .aria.roles import DEFAULT_TABLES
from .config import BridgeConfig
from .dom import NavigationError, Page
from .interactions import InteractionExecutor
from .protocol import (
    ACTIONS,
    INTERNAL_ERROR,
    INVALID_REQUEST,
    METHOD_CONSOLE,
    METHOD_INTERACT,
    METHOD_NAVIGATE,
    METHOD_SNAPSHOT,
    NAVIGATION_FAILED,
    NO_TAB,
    BridgeError,
    error_response,
    parse_selector,
    success_response,
)
from .resolver import SelectorResolver

logger = logging.getLogger("mcp.tab_bridge.agent")


class PageAgent:
    def __init__(
        self,
        page: Page | None = None,
        *,
        config: BridgeConfig | None = None,
        tables: RoleTables = DEFAULT_TABLES,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or BridgeConfig()
        self.tables = tables
        self._sleep = sleep
        self._lock = threading.RLock()
        self.page: Page | None = None
        self._classifier: Classifier | None = None
        # One table per agent session: tokens minted for a previous page stay unique.
        self.refs = ReferenceTable(self._is_live)
        self._handlers: dict[str, Callable[[Page, dict[str, Any]], dict[str, Any]]] = {
            METHOD_SNAPSHOT: self._snapshot,
            METHOD_NAVIGATE: self._navigate,
            METHOD_INTERACT: self._interact,
            METHOD_CONSOLE: self._console,
        }
        if page is not None:
            self.attach_page(page)

    def _is_live(self, element: Any) -> bool:
        page = self.page
        return page is not None and page.is_connected(element)

    def attach_page(self, page: Page) -> None:
        with self._lock:
            self.page = page
            self._classifier = Classifier(page, self.tables)
        logger.info("page attached url=%s", page.url)

    def detach_page(self) -> None:
        with self._lock:
            self.page = None
            self._classifier = None
        logger.info("page detached")

    # ─────────────────────────────────────────────────────────────────────────
    # Dispatch
    # ─────────────────────────────────────────────────────────────────────────

    def handle_raw(self, raw: str | bytes) -> dict[str, Any]:
        try:
            message = json.loads(raw)
        except ValueError:
            logger.error("malformed request frame: %.200r", raw)
            return error_response(None, INVALID_REQUEST, "Malformed JSON request")
        return self.handle(message)

    def handle(self, message: Any) -> dict[str, Any]:
        req_id = message.get("id") if isinstance(message, dict) else None
        method = message.get("method") if isinstance(message, dict) else None
        try:
            if not isinstance(message, dict):
                raise BridgeError(INVALID_REQUEST, "Request must be an object")
            handler = self._handlers.get(method) if isinstance(method, str) else None
            if handler is None:
                raise BridgeError(INVALID_REQUEST, f"Unknown method: {method}")
            params = message.get("params")
            if params is None:
                params = {}
            if not isinstance(params, dict):
                raise BridgeError(INVALID_REQUEST, "params must be an object")
            with self._lock:
                page = self.page
                if page is None:
                    raise BridgeError(NO_TAB, "No active tab")
                result = handler(page, params)
            logger.debug("handled id=%s method=%s", req_id, method)
            return success_response(req_id, result)
        except BridgeError as exc:
            logger.info("request failed id=%s method=%s code=%s: %s", req_id, method, exc.code, exc.message)
            return error_response(req_id, exc.code, exc.message)
        except Exception as exc:  # noqa: BLE001
            logger.exception("unexpected failure id=%s method=%s", req_id, method)
            return error_response(req_id, INTERNAL_ERROR, str(exc) or type(exc).__name__)

    # ─────────────────────────────────────────────────────────────────────────
    # Handlers
    # ─────────────────────────────────────────────────────────────────────────

    def _build_snapshot(self, page: Page) -> dict[str, Any]:
        return SnapshotBuilder(page, self.refs, self._classifier).build().to_dict()

    def _snapshot(self, page: Page, params: dict[str, Any]) -> dict[str, Any]:
        return self._build_snapshot(page)

    def _navigate(self, page: Page, params: dict[str, Any]) -> dict[str, Any]:
        url = params.get("url")
        if not isinstance(url, str) or not url.strip():
            raise BridgeError(INVALID_REQUEST, "url is required for navigate")
        try:
            page.navigate(url)
        except NavigationError as exc:
            raise BridgeError(NAVIGATION_FAILED, str(exc)) from exc
        return {"url": page.url, "title": page.title}

    def _interact(self, page: Page, params: dict[str, Any]) -> dict[str, Any]:
        action = params.get("action")
        if action not in ACTIONS:
            raise BridgeError(INVALID_REQUEST, f"Unknown action: {action}")

        element = None
        raw_selector = params.get("element")
        if action != "press":
            if raw_selector is None:
                raise BridgeError(INVALID_REQUEST, f"Element selector required for {action} action")
            resolver = SelectorResolver(page, self.refs, self._classifier)
            element = resolver.resolve(parse_selector(raw_selector))

        executor = InteractionExecutor(page, settle_delay=self.config.settle_delay, sleep=self._sleep)
        executor.perform(element, action, params)

        result: dict[str, Any] = {"success": True}
        if params.get("snapshot"):
            result.update(self._build_snapshot(page))
        return result

    def _console(self, page: Page, params: dict[str, Any]) -> dict[str, Any]:
        return {"logs": [entry.to_dict() for entry in page.console.entries()]}


def _import_websocket():
    try:
        import websocket

        return websocket
    except ImportError as exc:
        raise RuntimeError("AgentConnection requires the 'websocket-client' package (pip install websocket-client).") from exc


class AgentConnection:
    """Connects a ``PageAgent`` to the gateway and serves requests serially."""

    def __init__(self, agent: PageAgent, url: str | None = None, *, timeout: float = 5.0, poll_interval: float = 0.25):
        self.agent = agent
        self.url = url or agent.config.ws_url
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.ws: Any | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def connect(self) -> None:
        websocket = _import_websocket()
        self.ws = websocket.create_connection(self.url, timeout=self.timeout)
        logger.info("agent connected to %s", self.url)

    def serve_forever(self) -> None:
        websocket = _import_websocket()
        if self.ws is None:
            self.connect()
        ws = self.ws
        ws.settimeout(self.poll_interval)
        try:
            while not self._stop.is_set():
                try:
                    raw = ws.recv()
                except websocket.WebSocketTimeoutException:
                    continue
                except websocket.WebSocketConnectionClosedException:
                    logger.info("gateway closed the connection")
                    break
                if not raw:
                    continue
                response = self.agent.handle_raw(raw)
                ws.send(json.dumps(response, ensure_ascii=False))
        finally:
            self.close()

    def start(self) -> threading.Thread:
        """Connect synchronously, then serve on a daemon thread."""
        self._stop.clear()
        self.connect()
        t = threading.Thread(target=self.serve_forever, name="tab-bridge-agent", daemon=True)
        self._thread = t
        t.start()
        return t

    def stop(self, *, timeout: float = 2.0) -> None:
        self._stop.set()
        t = self._thread
        if t is not None:
            t.join(timeout=timeout)
        self.close()

    def close(self) -> None:
        ws = self.ws
        self.ws = None
        if ws is not None:
            try:
                ws.close()
            except Exception as exc:  # noqa: BLE001
                logger.debug("agent socket close failed: %s", exc)
