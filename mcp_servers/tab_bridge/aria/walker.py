from __future__ import annotations

from typing import Any, Callable, Iterator

from ..dom import Page, attr, is_element
from ..protocol import AriaElement
from .classifier import Classifier


class TreeWalker:
    """Pre-order walk of the flattened tree, including ``aria-owns`` children.

    An element reachable both structurally and through ``aria-owns`` is visited on both
    paths and yields one row per visit. Each element is entered through ownership at most
    once per walk, which keeps ownership cycles finite.
    """

    def __init__(self, page: Page, classifier: Classifier) -> None:
        self.page = page
        self.classifier = classifier

    def flattened_children(self, el: Any) -> list[Any]:
        return [c for c in self.page.flattened_children(el) if is_element(c)]

    def owned_elements(self, el: Any) -> list[Any]:
        out = []
        for owned_id in (attr(el, "aria-owns") or "").split():
            target = self.page.get_element_by_id(owned_id, context=el)
            if target is not None and target is not el:
                out.append(target)
        return out

    def visit(self, root: Any) -> Iterator[Any]:
        """Yield every visible element under ``root`` in flattened pre-order."""
        entered_via_owns: set[int] = set()
        stack: list[Any] = list(reversed(self.children_of(root, entered_via_owns)))
        while stack:
            el = stack.pop()
            if self.classifier.is_hidden(el):
                continue
            yield el
            stack.extend(reversed(self.children_of(el, entered_via_owns)))

    def children_of(self, el: Any, entered_via_owns: set[int]) -> list[Any]:
        children = self.flattened_children(el)
        for owned in self.owned_elements(el):
            if id(owned) in entered_via_owns:
                continue
            entered_via_owns.add(id(owned))
            children.append(owned)
        return children

    def walk(self, root: Any, ref_for: Callable[[Any], str]) -> list[AriaElement]:
        rows: list[AriaElement] = []
        for el in self.visit(root):
            if not self.classifier.include(self.classifier.role(el), el):
                continue
            info = self.classifier.classify(el)
            rows.append(AriaElement(ref=ref_for(el), role=info.role or "", name=info.name, states=info.states()))
        return rows
