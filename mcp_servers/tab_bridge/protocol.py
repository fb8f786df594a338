"""
Wire protocol for the tab bridge.

Requests travel as ``{id, method, params}``; the page side answers with either
``{id, result}`` or ``{id, error: {code, message}}``. This module also holds the value
types shared by both ends: element selectors, snapshot rows and snapshots.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

# Methods
METHOD_SNAPSHOT = "snapshot"
METHOD_NAVIGATE = "navigate"
METHOD_INTERACT = "interact"
METHOD_CONSOLE = "console"
METHODS = (METHOD_SNAPSHOT, METHOD_NAVIGATE, METHOD_INTERACT, METHOD_CONSOLE)

ACTIONS = ("click", "type", "hover", "select", "press")

# Error codes
ELEMENT_NOT_FOUND = "ELEMENT_NOT_FOUND"
ELEMENT_AMBIGUOUS = "ELEMENT_AMBIGUOUS"
ELEMENT_STALE = "ELEMENT_STALE"
TIMEOUT = "TIMEOUT"
NO_TAB = "NO_TAB"
NAVIGATION_FAILED = "NAVIGATION_FAILED"
INVALID_REQUEST = "INVALID_REQUEST"
INTERNAL_ERROR = "INTERNAL_ERROR"
CONNECTION_CLOSED = "CONNECTION_CLOSED"

ERROR_CODES = frozenset(
    {
        ELEMENT_NOT_FOUND,
        ELEMENT_AMBIGUOUS,
        ELEMENT_STALE,
        TIMEOUT,
        NO_TAB,
        NAVIGATION_FAILED,
        INVALID_REQUEST,
        INTERNAL_ERROR,
        CONNECTION_CLOSED,
    }
)


class BridgeError(Exception):
    """Typed failure carried end to end as ``{code, message}``."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code if code in ERROR_CODES else INTERNAL_ERROR
        self.message = message

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}

    @classmethod
    def from_dict(cls, raw: Any) -> BridgeError:
        if not isinstance(raw, dict):
            return cls(INTERNAL_ERROR, "Unknown error")
        code = raw.get("code")
        message = raw.get("message")
        return cls(
            code if isinstance(code, str) else INTERNAL_ERROR,
            message if isinstance(message, str) and message else "Unknown error",
        )


# ─────────────────────────────────────────────────────────────────────────────
# Element selectors
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ByRef:
    ref: str


@dataclass(frozen=True, slots=True)
class ByPattern:
    pattern: str


@dataclass(frozen=True, slots=True)
class ByRole:
    role: str
    name: str | None = None


ElementSelector = Union[ByRef, ByPattern, ByRole]

_STRATEGY_KEYS = {"ref": "ref", "css": "pattern", "pattern": "pattern", "role": "role"}


def _required_str(raw: dict[str, Any], key: str) -> str:
    val = raw.get(key)
    if not isinstance(val, str) or not val.strip():
        raise BridgeError(INVALID_REQUEST, f"Selector field '{key}' must be a non-empty string")
    return val


def parse_selector(raw: Any) -> ElementSelector:
    """Parse a wire selector into exactly one of ByRef / ByPattern / ByRole.

    An explicit ``"by"`` tag wins. Without it, exactly one strategy key must be present;
    selectors that name several strategies are rejected instead of merged.
    """
    if isinstance(raw, (ByRef, ByPattern, ByRole)):
        return raw
    if not isinstance(raw, dict):
        raise BridgeError(INVALID_REQUEST, "Element selector must be an object")

    tag = raw.get("by")
    if tag is None:
        present = sorted({_STRATEGY_KEYS[k] for k in raw if k in _STRATEGY_KEYS})
        if len(present) != 1:
            raise BridgeError(
                INVALID_REQUEST,
                f"Element selector must use exactly one of ref, css or role (got {json.dumps(raw, sort_keys=True)})",
            )
        tag = present[0]
    elif tag == "css":
        tag = "pattern"

    if tag == "ref":
        return ByRef(ref=_required_str(raw, "ref").strip())
    if tag == "pattern":
        key = "css" if "css" in raw else "pattern"
        return ByPattern(pattern=_required_str(raw, key))
    if tag == "role":
        name = raw.get("name")
        if name is not None and not isinstance(name, str):
            raise BridgeError(INVALID_REQUEST, "Selector field 'name' must be a string")
        return ByRole(role=_required_str(raw, "role").strip(), name=name)
    raise BridgeError(INVALID_REQUEST, f"Unknown selector strategy: {tag}")


def selector_to_dict(selector: ElementSelector) -> dict[str, str]:
    if isinstance(selector, ByRef):
        return {"ref": selector.ref}
    if isinstance(selector, ByPattern):
        return {"css": selector.pattern}
    if isinstance(selector, ByRole):
        out = {"role": selector.role}
        if selector.name is not None:
            out["name"] = selector.name
        return out
    raise TypeError(f"not an element selector: {selector!r}")


# ─────────────────────────────────────────────────────────────────────────────
# Snapshot values
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class AriaElement:
    ref: str
    role: str
    name: str
    states: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, str]:
        return {"ref": self.ref, "role": self.role, "name": self.name, "states": " ".join(self.states)}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> AriaElement:
        states = raw.get("states") or ""
        if isinstance(states, str):
            tokens = tuple(states.split())
        else:
            tokens = tuple(str(s) for s in states)
        return cls(
            ref=str(raw.get("ref") or ""),
            role=str(raw.get("role") or ""),
            name=str(raw.get("name") or ""),
            states=tokens,
        )


@dataclass(frozen=True, slots=True)
class AriaSnapshot:
    url: str
    title: str
    elements: tuple[AriaElement, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "title": self.title, "elements": [el.to_dict() for el in self.elements]}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> AriaSnapshot:
        rows = raw.get("elements")
        return cls(
            url=str(raw.get("url") or ""),
            title=str(raw.get("title") or ""),
            elements=tuple(AriaElement.from_dict(r) for r in rows if isinstance(r, dict))
            if isinstance(rows, list)
            else (),
        )


# ─────────────────────────────────────────────────────────────────────────────
# Envelopes
# ─────────────────────────────────────────────────────────────────────────────


def encode_request(req_id: str, method: str, params: dict[str, Any] | None = None) -> str:
    return json.dumps({"id": req_id, "method": method, "params": params or {}}, ensure_ascii=False)


def success_response(req_id: Any, result: Any) -> dict[str, Any]:
    return {"id": req_id, "result": result}


def error_response(req_id: Any, code: str, message: str) -> dict[str, Any]:
    return {"id": req_id, "error": {"code": code, "message": message}}
