from __future__ import annotations

import logging

from ..dom import Page
from ..protocol import AriaSnapshot
from .classifier import Classifier
from .refs import ReferenceTable
from .walker import TreeWalker

logger = logging.getLogger("mcp.tab_bridge.snapshot")


class SnapshotBuilder:
    def __init__(self, page: Page, refs: ReferenceTable, classifier: Classifier | None = None) -> None:
        self.page = page
        self.refs = refs
        self.classifier = classifier or Classifier(page)
        self.walker = TreeWalker(page, self.classifier)

    def build(self) -> AriaSnapshot:
        """Take one point-in-time snapshot of the page's accessibility tree."""
        self.page.invalidate_layout()
        pruned = self.refs.prune()
        rows = self.walker.walk(self.page.body, self.refs.get_or_create)
        logger.debug("snapshot url=%s rows=%d pruned=%d refs=%d", self.page.url, len(rows), pruned, len(self.refs))
        return AriaSnapshot(url=self.page.url, title=self.page.title, elements=tuple(rows))
