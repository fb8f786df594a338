"""
Correlated request/response session over one swappable connection.

- Sync API for callers (``call`` returns a Future, ``request`` blocks).
- Exactly one current connection; attaching a new one closes the old one and fails
  whatever was still pending on it.
- Every request has its own deadline timer; expiry fails only that request. A response
  that arrives after its deadline is dropped as an unknown id.
"""

from __future__ import annotations

import contextlib
import json
import logging
import threading
import uuid
from collections.abc import Callable
from concurrent.futures import Future, InvalidStateError
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Protocol

from .protocol import CONNECTION_CLOSED, INVALID_REQUEST, TIMEOUT, BridgeError, encode_request

logger = logging.getLogger("mcp.tab_bridge.rpc")

STATE_IDLE = "idle"
STATE_CONNECTED = "connected"


class Connection(Protocol):
    def send(self, payload: str) -> None: ...

    def close(self) -> None: ...


@dataclass(slots=True)
class PendingRequest:
    id: str
    method: str
    future: Future
    timer: Any
    connection: Any


class RpcSession:
    def __init__(
        self,
        *,
        default_timeout: float = 30.0,
        id_factory: Callable[[], Any] = uuid.uuid4,
        timer_factory: Callable[..., Any] = threading.Timer,
    ) -> None:
        self.default_timeout = max(0.0, float(default_timeout))
        self._id_factory = id_factory
        self._timer_factory = timer_factory
        # Re-entrant: closing a superseded connection may call back into detach().
        self._lock = threading.RLock()
        self._conn: Connection | None = None
        self._pending: dict[str, PendingRequest] = {}

    # ─────────────────────────────────────────────────────────────────────────
    # Connection lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def state(self) -> str:
        with self._lock:
            return STATE_CONNECTED if self._conn is not None else STATE_IDLE

    @property
    def is_connected(self) -> bool:
        return self.state == STATE_CONNECTED

    @property
    def connection(self) -> Connection | None:
        with self._lock:
            return self._conn

    def attach(self, conn: Connection) -> None:
        """Make ``conn`` current. Swap and close of the previous connection happen under one lock."""
        with self._lock:
            previous = self._conn
            if previous is conn:
                return
            self._conn = conn
            stale = self._take_pending(previous) if previous is not None else []
            if previous is not None:
                with contextlib.suppress(Exception):
                    previous.close()
        if previous is not None:
            logger.info("connection replaced; failing %d pending request(s)", len(stale))
        else:
            logger.info("connection attached")
        for pending in stale:
            self._fail(pending, BridgeError(CONNECTION_CLOSED, "Connection closed: replaced by a new connection"))

    def detach(self, conn: Connection) -> bool:
        """Drop ``conn`` if it is still current. Returns False for an already superseded connection."""
        with self._lock:
            if self._conn is not conn:
                return False
            self._conn = None
            stale = self._take_pending(conn)
        logger.info("connection closed; failing %d pending request(s)", len(stale))
        for pending in stale:
            self._fail(pending, BridgeError(CONNECTION_CLOSED, "Connection closed"))
        return True

    def close(self) -> None:
        with self._lock:
            conn = self._conn
            self._conn = None
            stale = list(self._pending.values())
            self._pending.clear()
            for pending in stale:
                pending.timer.cancel()
        if conn is not None:
            with contextlib.suppress(Exception):
                conn.close()
        for pending in stale:
            self._fail(pending, BridgeError(CONNECTION_CLOSED, "Connection closed"))

    def _take_pending(self, conn: Any) -> list[PendingRequest]:
        taken = [p for p in self._pending.values() if p.connection is conn]
        for pending in taken:
            del self._pending[pending.id]
            pending.timer.cancel()
        return taken

    # ─────────────────────────────────────────────────────────────────────────
    # Requests
    # ─────────────────────────────────────────────────────────────────────────

    def pending_ids(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def call(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> Future:
        fut: Future = Future()
        timeout_s = self.default_timeout if timeout is None else max(0.0, float(timeout))
        req_id = str(self._id_factory())
        try:
            payload = encode_request(req_id, method, params)
        except (TypeError, ValueError) as exc:
            fut.set_exception(BridgeError(INVALID_REQUEST, f"Request params are not JSON-serialisable: {exc}"))
            return fut

        with self._lock:
            conn = self._conn
            if conn is None:
                fut.set_exception(BridgeError(CONNECTION_CLOSED, "No active connection"))
                return fut
            timer = self._timer_factory(timeout_s, self._expire, args=(req_id, timeout_s))
            timer.daemon = True
            self._pending[req_id] = PendingRequest(id=req_id, method=method, future=fut, timer=timer, connection=conn)
        timer.start()
        fut.add_done_callback(lambda f: self._forget_cancelled(req_id, f))

        logger.debug("-> id=%s method=%s timeout=%.3fs", req_id, method, timeout_s)
        try:
            conn.send(payload)
        except Exception as exc:  # noqa: BLE001
            pending = self._pop(req_id)
            if pending is not None:
                pending.timer.cancel()
                self._fail(pending, BridgeError(CONNECTION_CLOSED, f"Send failed: {exc}"))
        return fut

    def request(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> Any:
        """Blocking ``call``: returns the result or raises ``BridgeError``."""
        timeout_s = self.default_timeout if timeout is None else max(0.0, float(timeout))
        fut = self.call(method, params, timeout=timeout_s)
        try:
            return fut.result(timeout=timeout_s + 1.0)
        except FutureTimeoutError as exc:
            raise BridgeError(TIMEOUT, f"Request timed out after {int(round(timeout_s * 1000))}ms") from exc

    def handle_message(self, raw: Any) -> bool:
        """Settle the pending request a response belongs to. Returns False when it was dropped."""
        if isinstance(raw, (str, bytes, bytearray)):
            try:
                msg = json.loads(raw)
            except ValueError:
                logger.error("dropping malformed frame: %.200r", raw)
                return False
        else:
            msg = raw
        if not isinstance(msg, dict):
            logger.error("dropping non-object frame: %.200r", msg)
            return False

        req_id = msg.get("id")
        pending = self._pop(str(req_id)) if req_id is not None else None
        if pending is None:
            logger.warning("dropping response for unknown id=%s", req_id)
            return False
        pending.timer.cancel()

        err = msg.get("error")
        if err is not None:
            failure = BridgeError.from_dict(err)
            logger.debug("<- id=%s method=%s error=%s", pending.id, pending.method, failure.code)
            self._fail(pending, failure)
        else:
            logger.debug("<- id=%s method=%s ok", pending.id, pending.method)
            with contextlib.suppress(InvalidStateError):
                pending.future.set_result(msg.get("result"))
        return True

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    def _pop(self, req_id: str) -> PendingRequest | None:
        with self._lock:
            return self._pending.pop(req_id, None)

    def _expire(self, req_id: str, timeout_s: float) -> None:
        pending = self._pop(req_id)
        if pending is None:
            return
        logger.warning("request timed out id=%s method=%s", req_id, pending.method)
        self._fail(pending, BridgeError(TIMEOUT, f"Request timed out after {int(round(timeout_s * 1000))}ms"))

    def _forget_cancelled(self, req_id: str, fut: Future) -> None:
        if not fut.cancelled():
            return
        pending = self._pop(req_id)
        if pending is not None:
            pending.timer.cancel()

    @staticmethod
    def _fail(pending: PendingRequest, error: BridgeError) -> None:
        # A caller may already have cancelled the future.
        with contextlib.suppress(InvalidStateError):
            pending.future.set_exception(error)
