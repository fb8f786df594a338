from __future__ import annotations

import itertools
from typing import Any, Callable

from ..protocol import ELEMENT_NOT_FOUND, ELEMENT_STALE, BridgeError

REF_PREFIX = "e"


class ReferenceTable:
    """Element handle <-> ``e<N>`` token cache for one session.

    Tokens come from one monotonic counter that is never reset, so a token is never bound to
    two different elements. Handles are keyed by identity; ``is_live`` decides whether a cached
    handle still belongs to the live document.
    """

    def __init__(self, is_live: Callable[[Any], bool]) -> None:
        self._is_live = is_live
        self._counter = itertools.count(1)
        self._by_ref: dict[str, Any] = {}
        self._by_element: dict[int, str] = {}

    def get_or_create(self, element: Any) -> str:
        ref = self._by_element.get(id(element))
        if ref is not None and self._by_ref.get(ref) is element:
            return ref
        ref = f"{REF_PREFIX}{next(self._counter)}"
        self._by_ref[ref] = element
        self._by_element[id(element)] = ref
        return ref

    def lookup(self, ref: str) -> Any | None:
        return self._by_ref.get(ref)

    def resolve(self, ref: str) -> Any:
        element = self._by_ref.get(ref)
        if element is None:
            raise BridgeError(ELEMENT_NOT_FOUND, f"No element with ref {ref}")
        if not self._is_live(element):
            raise BridgeError(ELEMENT_STALE, f"Element {ref} is no longer attached to the page")
        return element

    def prune(self) -> int:
        """Drop entries whose element is gone. Returns how many were removed."""
        dead = [ref for ref, el in self._by_ref.items() if not self._is_live(el)]
        for ref in dead:
            element = self._by_ref.pop(ref)
            if self._by_element.get(id(element)) == ref:
                del self._by_element[id(element)]
        return len(dead)

    def clear(self) -> None:
        self._by_ref.clear()
        self._by_element.clear()

    def __len__(self) -> int:
        return len(self._by_ref)

    def __contains__(self, ref: object) -> bool:
        return ref in self._by_ref
