from __future__ import annotations

import itertools
import json
import threading
import time
from typing import Any

import pytest


class _FakeConn:
    def __init__(self, *, fail_send: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.fail_send = fail_send

    def send(self, payload: str) -> None:
        if self.fail_send:
            raise OSError("socket is gone")
        self.sent.append(json.loads(payload))

    def close(self) -> None:
        self.closed = True


class _FakeTimer:
    def __init__(self, interval: float, function, args=()) -> None:  # noqa: ANN001
        self.interval = interval
        self.function = function
        self.args = args
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.function(*self.args)


def _session(**kwargs):
    from mcp_servers.tab_bridge.rpc_session import RpcSession

    timers: list[_FakeTimer] = []

    def _factory(interval: float, function, args=()):  # noqa: ANN001
        timer = _FakeTimer(interval, function, args)
        timers.append(timer)
        return timer

    ids = itertools.count(1)
    session = RpcSession(id_factory=lambda: f"r{next(ids)}", timer_factory=_factory, **kwargs)
    return session, timers


def test_call_sends_envelope_and_resolves_matching_response() -> None:
    session, timers = _session()
    conn = _FakeConn()
    session.attach(conn)

    fut = session.call("snapshot", {})
    assert conn.sent == [{"id": "r1", "method": "snapshot", "params": {}}]
    assert session.pending_ids() == ["r1"]
    assert timers[0].started and timers[0].daemon

    assert session.handle_message(json.dumps({"id": "r1", "result": {"url": "u"}})) is True
    assert fut.result(timeout=1) == {"url": "u"}
    assert timers[0].cancelled
    assert session.pending_ids() == []


def test_out_of_order_responses_are_correlated() -> None:
    session, _timers = _session()
    session.attach(_FakeConn())
    first = session.call("navigate", {"url": "a"})
    second = session.call("console")

    session.handle_message({"id": "r2", "result": {"logs": []}})
    assert not first.done()
    session.handle_message({"id": "r1", "result": {"url": "a", "title": ""}})
    assert second.result(timeout=1) == {"logs": []}
    assert first.result(timeout=1)["url"] == "a"


def test_error_response_becomes_typed_failure() -> None:
    from mcp_servers.tab_bridge.protocol import ELEMENT_NOT_FOUND, BridgeError

    session, _timers = _session()
    session.attach(_FakeConn())
    fut = session.call("interact", {"action": "click", "element": {"ref": "e99"}})
    session.handle_message({"id": "r1", "error": {"code": ELEMENT_NOT_FOUND, "message": "No element with ref e99"}})
    with pytest.raises(BridgeError) as exc:
        fut.result(timeout=1)
    assert exc.value.code == ELEMENT_NOT_FOUND
    assert exc.value.message == "No element with ref e99"


def test_timeout_rejects_with_configured_duration_and_forgets_id() -> None:
    from mcp_servers.tab_bridge.protocol import TIMEOUT, BridgeError

    session, timers = _session(default_timeout=30.0)
    session.attach(_FakeConn())
    fut = session.call("snapshot")
    assert timers[0].interval == 30.0

    timers[0].fire()
    with pytest.raises(BridgeError) as exc:
        fut.result(timeout=1)
    assert exc.value.code == TIMEOUT
    assert exc.value.message == "Request timed out after 30000ms"
    assert session.pending_ids() == []

    # The late answer is dropped as an unknown id.
    assert session.handle_message({"id": "r1", "result": {}}) is False


def test_real_timer_expires_only_its_own_request() -> None:
    from mcp_servers.tab_bridge.protocol import TIMEOUT, BridgeError
    from mcp_servers.tab_bridge.rpc_session import RpcSession

    session = RpcSession(default_timeout=5.0)
    session.attach(_FakeConn())
    slow = session.call("snapshot", timeout=0.05)
    other = session.call("console")

    started = time.monotonic()
    with pytest.raises(BridgeError) as exc:
        slow.result(timeout=2)
    assert exc.value.code == TIMEOUT
    assert time.monotonic() - started < 2
    assert not other.done()
    session.close()


def test_unknown_and_malformed_frames_are_dropped() -> None:
    session, _timers = _session()
    session.attach(_FakeConn())
    fut = session.call("snapshot")
    assert session.handle_message("{not json") is False
    assert session.handle_message("[1, 2]") is False
    assert session.handle_message({"id": "nope", "result": {}}) is False
    assert session.handle_message({"result": {}}) is False
    assert not fut.done()
    assert session.pending_ids() == ["r1"]


def test_second_connection_replaces_first_and_fails_its_requests() -> None:
    from mcp_servers.tab_bridge.protocol import CONNECTION_CLOSED, BridgeError

    session, timers = _session()
    first, second = _FakeConn(), _FakeConn()
    session.attach(first)
    pending = session.call("snapshot")

    session.attach(second)
    assert first.closed
    assert session.connection is second
    with pytest.raises(BridgeError) as exc:
        pending.result(timeout=1)
    assert exc.value.code == CONNECTION_CLOSED
    assert timers[0].cancelled
    assert session.pending_ids() == []

    session.call("console")
    assert second.sent[-1]["method"] == "console"
    assert first.sent == [{"id": "r1", "method": "snapshot", "params": {}}]

    # The superseded socket reporting its own close must not disturb the new one.
    assert session.detach(first) is False
    assert session.state == "connected"


def test_detach_drops_to_idle() -> None:
    from mcp_servers.tab_bridge.protocol import CONNECTION_CLOSED, BridgeError

    session, _timers = _session()
    conn = _FakeConn()
    session.attach(conn)
    fut = session.call("snapshot")
    assert session.detach(conn) is True
    assert session.state == "idle"
    with pytest.raises(BridgeError) as exc:
        fut.result(timeout=1)
    assert exc.value.code == CONNECTION_CLOSED


def test_close_rejects_everything_and_closes_connection() -> None:
    from mcp_servers.tab_bridge.protocol import CONNECTION_CLOSED, BridgeError

    session, timers = _session()
    conn = _FakeConn()
    session.attach(conn)
    futures = [session.call("snapshot"), session.call("console")]
    session.close()

    assert conn.closed
    assert session.state == "idle"
    assert session.pending_ids() == []
    assert all(t.cancelled for t in timers)
    for fut in futures:
        with pytest.raises(BridgeError) as exc:
            fut.result(timeout=1)
        assert exc.value.code == CONNECTION_CLOSED


def test_call_without_connection_fails_fast() -> None:
    from mcp_servers.tab_bridge.protocol import CONNECTION_CLOSED, BridgeError

    session, timers = _session()
    fut = session.call("snapshot")
    with pytest.raises(BridgeError) as exc:
        fut.result(timeout=1)
    assert exc.value.code == CONNECTION_CLOSED
    assert timers == []


def test_send_failure_removes_pending_entry() -> None:
    from mcp_servers.tab_bridge.protocol import CONNECTION_CLOSED, BridgeError

    session, timers = _session()
    session.attach(_FakeConn(fail_send=True))
    fut = session.call("snapshot")
    with pytest.raises(BridgeError) as exc:
        fut.result(timeout=1)
    assert exc.value.code == CONNECTION_CLOSED
    assert "socket is gone" in exc.value.message
    assert timers[0].cancelled
    assert session.pending_ids() == []


def test_cancelled_future_leaves_the_table() -> None:
    session, timers = _session()
    session.attach(_FakeConn())
    fut = session.call("snapshot")
    assert fut.cancel()
    assert session.pending_ids() == []
    assert timers[0].cancelled
    assert session.handle_message({"id": "r1", "result": {}}) is False


def test_concurrent_calls_get_unique_ids() -> None:
    from mcp_servers.tab_bridge.rpc_session import RpcSession

    session = RpcSession(default_timeout=5.0)
    conn = _FakeConn()
    session.attach(conn)
    lock = threading.Lock()
    futures = []

    def _worker() -> None:
        for _ in range(25):
            fut = session.call("console")
            with lock:
                futures.append(fut)

    threads = [threading.Thread(target=_worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    ids = [msg["id"] for msg in conn.sent]
    assert len(ids) == 100 and len(set(ids)) == 100
    for msg in conn.sent:
        session.handle_message({"id": msg["id"], "result": {"logs": []}})
    assert all(f.result(timeout=1) == {"logs": []} for f in futures)
    assert session.pending_ids() == []


def test_unserialisable_params_are_invalid_and_never_sent() -> None:
    from mcp_servers.tab_bridge.protocol import INVALID_REQUEST, BridgeError

    session, timers = _session()
    conn = _FakeConn()
    session.attach(conn)
    fut = session.call("navigate", {"url": object()})
    with pytest.raises(BridgeError) as exc:
        fut.result(timeout=1)
    assert exc.value.code == INVALID_REQUEST
    assert conn.sent == []
    assert timers == []
    assert session.pending_ids() == []
    assert session.state == "connected"
