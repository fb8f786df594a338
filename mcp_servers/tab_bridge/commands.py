from __future__ import annotations

from typing import Any, Protocol

from .console_capture import ConsoleEntry
from .protocol import (
    ACTIONS,
    INVALID_REQUEST,
    METHOD_CONSOLE,
    METHOD_INTERACT,
    METHOD_NAVIGATE,
    METHOD_SNAPSHOT,
    AriaSnapshot,
    BridgeError,
    parse_selector,
    selector_to_dict,
)


class Transport(Protocol):
    def request(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> Any: ...


class BrowserCommands:
    """Caller-side facade: validates arguments, sends one request, types the result."""

    def __init__(self, transport: Transport, *, timeout: float | None = None) -> None:
        self.transport = transport
        self.timeout = timeout

    def _send(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        result = self.transport.request(method, params, timeout=self.timeout)
        return result if isinstance(result, dict) else {}

    def snapshot(self) -> AriaSnapshot:
        return AriaSnapshot.from_dict(self._send(METHOD_SNAPSHOT, {}))

    def navigate(self, url: str) -> dict[str, Any]:
        if not isinstance(url, str) or not url.strip():
            raise BridgeError(INVALID_REQUEST, "url is required")
        return self._send(METHOD_NAVIGATE, {"url": url.strip()})

    def interact(
        self,
        action: str,
        element: Any = None,
        *,
        text: str | None = None,
        key: str | None = None,
        value: str | None = None,
        snapshot: bool = False,
    ) -> dict[str, Any]:
        if action not in ACTIONS:
            raise BridgeError(INVALID_REQUEST, f"Unknown action: {action} (expected one of {', '.join(ACTIONS)})")
        params: dict[str, Any] = {"action": action, "snapshot": bool(snapshot)}
        if element is not None:
            params["element"] = selector_to_dict(parse_selector(element))
        elif action != "press":
            raise BridgeError(INVALID_REQUEST, f"Element selector required for {action} action")

        if action == "type":
            if text is None:
                raise BridgeError(INVALID_REQUEST, "text is required for type")
            params["text"] = text
        elif action == "select":
            if value is None:
                raise BridgeError(INVALID_REQUEST, "value is required for select")
            params["value"] = value
        elif action == "press":
            if not key:
                raise BridgeError(INVALID_REQUEST, "key is required for press")
            params["key"] = key
        return self._send(METHOD_INTERACT, params)

    def console(self) -> list[ConsoleEntry]:
        logs = self._send(METHOD_CONSOLE, {}).get("logs")
        if not isinstance(logs, list):
            return []
        return [ConsoleEntry.from_dict(row) for row in logs if isinstance(row, dict)]
