from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from .dom import Page, attr
from .protocol import ACTIONS, INVALID_REQUEST, BridgeError

logger = logging.getLogger("mcp.tab_bridge.interactions")

NON_TEXT_INPUT_TYPES = frozenset(
    {"button", "checkbox", "radio", "submit", "reset", "image", "file", "hidden", "range", "color"}
)
FOCUSABLE_TAGS = frozenset({"button", "input", "select", "textarea"})


class InteractionExecutor:
    """Perform one user action against a resolved element, then wait for the page to settle."""

    def __init__(self, page: Page, *, settle_delay: float = 0.1, sleep: Callable[[float], None] = time.sleep) -> None:
        self.page = page
        self.settle_delay = max(0.0, float(settle_delay))
        self._sleep = sleep

    def validate(self, element: Any, action: str, params: dict[str, Any]) -> None:
        """Reject malformed actions before the page is touched."""
        if action not in ACTIONS:
            raise BridgeError(INVALID_REQUEST, f"Unknown action: {action}")
        if action == "press":
            key = params.get("key")
            if not isinstance(key, str) or not key:
                raise BridgeError(INVALID_REQUEST, "Key required for press action")
            return
        if element is None:
            raise BridgeError(INVALID_REQUEST, f"Element selector required for {action} action")
        if action == "type":
            if not isinstance(params.get("text"), str):
                raise BridgeError(INVALID_REQUEST, "Text required for type action")
            if not self.is_text_target(element):
                raise BridgeError(INVALID_REQUEST, f"Type action requires a text input, textarea or editable element (got <{element.name}>)")
        elif action == "select":
            value = params.get("value")
            if not isinstance(value, str):
                raise BridgeError(INVALID_REQUEST, "Value required for select action")
            if element.name != "select":
                raise BridgeError(INVALID_REQUEST, "Select action requires a <select> element")
            if not any(self.page.option_value(o) == value for o in self.page.options(element)):
                raise BridgeError(INVALID_REQUEST, f"No option with value {value!r}")

    def is_text_target(self, el: Any) -> bool:
        if el.name == "textarea":
            return True
        if el.name == "input":
            return (attr(el, "type") or "").strip().lower() not in NON_TEXT_INPUT_TYPES
        return self.page.is_content_editable(el)

    def is_focusable(self, el: Any) -> bool:
        if el.name in FOCUSABLE_TAGS:
            return not self.page.is_disabled(el)
        if el.name == "a" and el.has_attr("href"):
            return True
        return el.has_attr("tabindex") or self.page.is_content_editable(el)

    def perform(self, element: Any, action: str, params: dict[str, Any] | None = None) -> None:
        params = params or {}
        self.validate(element, action, params)
        if element is not None and action != "press":
            self.page.scroll_into_view(element, block="center", inline="center")
        logger.debug("perform action=%s tag=%s", action, getattr(element, "name", None))
        getattr(self, f"_{action}")(element, params)
        if self.settle_delay:
            self._sleep(self.settle_delay)

    # ─────────────────────────────────────────────────────────────────────────
    # Actions
    # ─────────────────────────────────────────────────────────────────────────

    def _click(self, el: Any, params: dict[str, Any]) -> None:
        page = self.page
        page.dispatch_event(el, "mousedown", button=0)
        if self.is_focusable(el):
            page.focus(el)
        page.dispatch_event(el, "mouseup", button=0)
        page.activate(el)

    def _type(self, el: Any, params: dict[str, Any]) -> None:
        page = self.page
        text = params["text"]
        page.focus(el)
        if el.name in ("input", "textarea"):
            page.set_value(el, text)
            page.dispatch_event(el, "input", inputType="insertText", data=text)
            page.dispatch_event(el, "change")
        else:
            page.set_text(el, text)
            page.dispatch_event(el, "input", inputType="insertText", data=text)

    def _hover(self, el: Any, params: dict[str, Any]) -> None:
        page = self.page
        page.dispatch_event(el, "mouseover")
        page.dispatch_event(el, "mouseenter", bubbles=False)
        page.dispatch_event(el, "mousemove")

    def _select(self, el: Any, params: dict[str, Any]) -> None:
        self.page.set_value(el, params["value"])
        self.page.dispatch_event(el, "change")

    def _press(self, el: Any, params: dict[str, Any]) -> None:
        page = self.page
        target = page.active_element or page.body
        key = params["key"]
        for kind in ("keydown", "keypress", "keyup"):
            page.dispatch_event(target, kind, key=key)
