from __future__ import annotations

from typing import Any

from .aria.classifier import Classifier, normalize_whitespace
from .aria.refs import ReferenceTable
from .aria.walker import TreeWalker
from .dom import InvalidSelectorError, Page
from .protocol import (
    ELEMENT_AMBIGUOUS,
    ELEMENT_NOT_FOUND,
    INVALID_REQUEST,
    BridgeError,
    ByPattern,
    ByRef,
    ByRole,
    ElementSelector,
    selector_to_dict,
)


def describe(selector: ElementSelector) -> str:
    return ", ".join(f"{k}={v!r}" for k, v in selector_to_dict(selector).items())


class SelectorResolver:
    """Turn a logical selector into exactly one live element, or fail."""

    def __init__(self, page: Page, refs: ReferenceTable, classifier: Classifier | None = None) -> None:
        self.page = page
        self.refs = refs
        self.classifier = classifier or Classifier(page)
        self.walker = TreeWalker(page, self.classifier)

    def candidates(self, selector: ElementSelector) -> list[Any]:
        if isinstance(selector, ByRef):
            return [self.refs.resolve(selector.ref)]

        if isinstance(selector, ByPattern):
            try:
                return self.page.query_selector_all(selector.pattern)
            except InvalidSelectorError as exc:
                raise BridgeError(INVALID_REQUEST, str(exc)) from exc

        if isinstance(selector, ByRole):
            role = selector.role.strip().lower()
            wanted = normalize_whitespace(selector.name) if selector.name is not None else None
            self.page.invalidate_layout()
            out: list[Any] = []
            seen: set[int] = set()
            for el in self.walker.visit(self.page.body):
                el_role = self.classifier.role(el)
                if el_role != role:
                    continue
                if wanted is not None and self.classifier.name(el, el_role) != wanted:
                    continue
                # Owned elements can be reached twice; count each element once.
                if id(el) not in seen:
                    seen.add(id(el))
                    out.append(el)
            return out

        raise BridgeError(INVALID_REQUEST, f"Unsupported selector: {selector!r}")

    def resolve(self, selector: ElementSelector) -> Any:
        found = self.candidates(selector)
        if not found:
            raise BridgeError(ELEMENT_NOT_FOUND, f"No element matches {describe(selector)}")
        if len(found) > 1:
            raise BridgeError(ELEMENT_AMBIGUOUS, f"{len(found)} elements match {describe(selector)}")
        return found[0]
