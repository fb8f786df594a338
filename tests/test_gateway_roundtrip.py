from __future__ import annotations

import contextlib
import socket
import time

import pytest

HTML = "<html><head><title>Bridge</title></head><body><button id='go'>Go</button></body></html>"


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])


def _require_ws_stack() -> None:
    try:
        import websocket  # noqa: F401
        import websockets  # type: ignore[import-not-found]  # noqa: F401
    except Exception:  # noqa: BLE001
        pytest.skip("websockets / websocket-client not installed")


def _agent_for(config):  # noqa: ANN001
    from mcp_servers.tab_bridge.agent import AgentConnection, PageAgent
    from mcp_servers.tab_bridge.dom import Page

    agent = PageAgent(Page(HTML, url="https://bridge.test/", config=config), config=config, sleep=lambda _s: None)
    return AgentConnection(agent, timeout=2.0, poll_interval=0.05)


def _wait(predicate, timeout: float = 3.0) -> bool:  # noqa: ANN001
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return bool(predicate())


def test_gateway_snapshot_and_click_roundtrip() -> None:
    _require_ws_stack()

    from mcp_servers.tab_bridge.commands import BrowserCommands
    from mcp_servers.tab_bridge.config import BridgeConfig
    from mcp_servers.tab_bridge.gateway import BridgeGateway

    config = BridgeConfig(port=_free_port(), port_span=0, settle_ms=0, rpc_timeout=5.0)
    gw = BridgeGateway(config)
    link = None
    try:
        gw.start()
        st = gw.status()
        assert st["listening"] is True
        assert st["connected"] is False
        assert st["state"] == "idle"

        link = _agent_for(config)
        link.start()
        assert gw.wait_for_connection(timeout=3.0)

        commands = BrowserCommands(gw)
        snap = commands.snapshot()
        assert snap.title == "Bridge"
        assert [(e.ref, e.role, e.name) for e in snap.elements] == [("e1", "button", "Go")]

        result = commands.interact("click", {"ref": "e1"}, snapshot=True)
        assert result["success"] is True
        assert result["elements"][0]["states"] == "focused"
        assert gw.status()["pending"] == 0
    finally:
        if link is not None:
            link.stop()
        gw.stop(timeout=2.0)


def test_gateway_error_frames_become_bridge_errors() -> None:
    _require_ws_stack()

    from mcp_servers.tab_bridge.config import BridgeConfig
    from mcp_servers.tab_bridge.gateway import BridgeGateway
    from mcp_servers.tab_bridge.protocol import ELEMENT_NOT_FOUND, BridgeError

    config = BridgeConfig(port=_free_port(), port_span=0, settle_ms=0, rpc_timeout=5.0)
    gw = BridgeGateway(config)
    link = None
    try:
        gw.start()
        link = _agent_for(config)
        link.start()
        assert gw.wait_for_connection(timeout=3.0)

        with pytest.raises(BridgeError) as exc:
            gw.request("interact", {"action": "click", "element": {"ref": "e42"}})
        assert exc.value.code == ELEMENT_NOT_FOUND
    finally:
        if link is not None:
            link.stop()
        gw.stop(timeout=2.0)


def test_second_agent_replaces_first() -> None:
    _require_ws_stack()

    from mcp_servers.tab_bridge.config import BridgeConfig
    from mcp_servers.tab_bridge.gateway import BridgeGateway

    config = BridgeConfig(port=_free_port(), port_span=0, settle_ms=0, rpc_timeout=5.0)
    gw = BridgeGateway(config)
    first = second = None
    try:
        gw.start()
        first = _agent_for(config)
        first.start()
        assert gw.wait_for_connection(timeout=3.0)

        second = _agent_for(config)
        second.agent.page.load("<title>Second</title><body></body>", url="https://second.test/")
        second.start()
        assert _wait(lambda: gw.status()["connectionsTotal"] == 2)

        result = gw.request("snapshot", {})
        assert result["title"] == "Second"
        assert gw.is_connected()
    finally:
        for link in (first, second):
            if link is not None:
                link.stop()
        gw.stop(timeout=2.0)


def test_start_fail_soft_reports_bind_error() -> None:
    _require_ws_stack()

    from mcp_servers.tab_bridge.config import BridgeConfig
    from mcp_servers.tab_bridge.gateway import BridgeGateway

    port = _free_port()
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(("127.0.0.1", port))
    blocker.listen(1)

    gw = BridgeGateway(BridgeConfig(port=port, port_span=0))
    try:
        gw.start(wait_timeout=0.3, require_listening=False)
        st = gw.status()
        assert st["listening"] is False
        assert st["threadAlive"] is True
        assert st["bindError"]

        blocker.close()
        assert _wait(lambda: gw.status()["listening"] is True, timeout=4.0)
    finally:
        with contextlib.suppress(Exception):
            blocker.close()
        gw.stop(timeout=2.0)
