"""
Page environment: one browser tab modelled over a BeautifulSoup document.

What it provides on top of the parsed HTML:
- Declarative shadow roots (<template shadowrootmode>) and slot assignment
- Computed display/visibility from inline styles and UA defaults
- Bounding boxes (explicit px sizes, intrinsic control sizes, content sizing)
- Form state (value/checked/indeterminate/selected/disabled), labels, focus
- Event dispatch with bubbling listeners and native click activation
- Navigation (about:blank, data:, file:, http/https) and a console buffer

Element handles are ``bs4.Tag`` objects. Tags compare equal by structure, so everything
here (and in the core) compares handles with ``is`` and keys side tables by ``id()``.
"""

from __future__ import annotations

import base64
import logging
import re
import urllib.parse
import urllib.request
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString
from soupsieve import SelectorSyntaxError

from .config import BridgeConfig
from .console_capture import ConsoleBuffer
from .http_client import HttpClientError, http_get

logger = logging.getLogger("mcp.tab_bridge.dom")

NON_RENDERED_TAGS = frozenset(
    {"head", "script", "style", "template", "title", "meta", "link", "base", "noscript", "datalist", "param", "source", "track"}
)

# Intrinsic (width, height) of replaced elements and form controls.
INTRINSIC_SIZES: dict[str, tuple[float, float]] = {
    "input": (150.0, 21.0),
    "textarea": (180.0, 40.0),
    "select": (120.0, 21.0),
    "button": (16.0, 21.0),
    "img": (16.0, 16.0),
    "iframe": (300.0, 150.0),
    "video": (300.0, 150.0),
    "canvas": (300.0, 150.0),
    "svg": (300.0, 150.0),
    "embed": (300.0, 150.0),
    "object": (300.0, 150.0),
    "progress": (160.0, 16.0),
    "meter": (80.0, 16.0),
    "hr": (100.0, 2.0),
}

LABELABLE_TAGS = frozenset({"input", "select", "textarea", "button", "meter", "output", "progress"})
DISABLEABLE_TAGS = frozenset({"input", "button", "select", "textarea"})

_CHAR_WIDTH = 8.0
_LINE_HEIGHT = 16.0
_PX_RE = re.compile(r"^(-?\d+(?:\.\d+)?)(px)?$")


class NavigationError(Exception):
    pass


class InvalidSelectorError(ValueError):
    pass


@dataclass(slots=True)
class DomEvent:
    type: str
    target: Any
    detail: dict[str, Any] = field(default_factory=dict)
    bubbles: bool = True
    default_prevented: bool = False

    def prevent_default(self) -> None:
        self.default_prevented = True


EventListener = Callable[[DomEvent], None]


@dataclass(slots=True)
class _ScopeIndex:
    """Per tree scope lookups: first element per id, labels per ``for`` target."""

    ids: dict[str, Tag] = field(default_factory=dict)
    label_for: dict[str, list[Tag]] = field(default_factory=dict)


def is_element(node: Any) -> bool:
    return isinstance(node, Tag) and not isinstance(node, BeautifulSoup)


def is_text(node: Any) -> bool:
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def attr(node: Any, name: str) -> str | None:
    """Attribute value as a string (multi-valued attributes are space-joined)."""
    if not isinstance(node, Tag):
        return None
    val = node.get(name)
    if val is None:
        return None
    if isinstance(val, list):
        return " ".join(val)
    return str(val)


def parse_inline_style(raw: str | None) -> dict[str, str]:
    out: dict[str, str] = {}
    for decl in (raw or "").split(";"):
        prop, sep, value = decl.partition(":")
        if not sep:
            continue
        prop = prop.strip().lower()
        value = value.replace("!important", "").strip().lower()
        if prop and value:
            out[prop] = value
    return out


def _px(raw: str | None) -> float | None:
    if raw is None:
        return None
    m = _PX_RE.match(raw.strip().lower())
    if not m:
        return None
    return max(0.0, float(m.group(1)))


def _decode_data_url(url: str) -> str:
    header, sep, payload = url[len("data:") :].partition(",")
    if not sep:
        raise ValueError("malformed data: URL")
    if header.lower().endswith(";base64"):
        return base64.b64decode(urllib.parse.unquote(payload)).decode("utf-8", errors="replace")
    return urllib.parse.unquote(payload)


class Page:
    """A single tab: the live document plus the browser behaviour the core relies on."""

    def __init__(
        self,
        html: str = "",
        *,
        url: str = "about:blank",
        config: BridgeConfig | None = None,
        loader: Callable[[str], tuple[str, str]] | None = None,
        follow_links: bool = True,
        max_events: int = 500,
    ) -> None:
        self.config = config or BridgeConfig()
        self.console = ConsoleBuffer(max_entries=self.config.console_max_entries)
        self.events: deque[DomEvent] = deque(maxlen=max(1, int(max_events)))
        self.follow_links = follow_links
        self._loader = loader
        self._listeners: dict[int, list[tuple[Tag, str, EventListener]]] = {}
        self._indeterminate: dict[int, Tag] = {}
        self._layout: dict[int, tuple[Tag, tuple[float, float]]] = {}
        self._shadow_roots: dict[int, tuple[Tag, Tag | None]] = {}
        self._scopes: dict[int, tuple[Any, _ScopeIndex]] = {}
        self._active: Tag | None = None
        self.scroll_target: Tag | None = None
        self.load(html, url=url)

    # ─────────────────────────────────────────────────────────────────────────
    # Document lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def load(self, html: str, *, url: str = "about:blank") -> None:
        self._document = BeautifulSoup(html or "", "html.parser")
        self.url = url
        self.ready_state = "complete"
        self._active = None
        self.scroll_target = None
        self._listeners.clear()
        self._indeterminate.clear()
        self.invalidate_layout()

    def navigate(self, url: str) -> None:
        target = (url or "").strip()
        if not target:
            raise NavigationError("URL is required")
        if urllib.parse.urlparse(target).scheme == "" and self.url != "about:blank":
            target = urllib.parse.urljoin(self.url, target)
        scheme = urllib.parse.urlparse(target).scheme.lower()

        self.ready_state = "loading"
        try:
            if target == "about:blank":
                html, final_url = "", target
            elif scheme == "data":
                html, final_url = _decode_data_url(target), target
            elif self._loader is not None:
                html, final_url = self._loader(target)
            elif scheme in ("http", "https"):
                res = http_get(target, self.config)
                html, final_url = str(res.get("body") or ""), str(res.get("url") or target)
            elif scheme == "file":
                if self.config.allow_hosts:
                    raise NavigationError("file:// navigation requires an empty host allowlist")
                path = urllib.request.url2pathname(urllib.parse.urlparse(target).path)
                html, final_url = Path(path).read_text(encoding="utf-8", errors="replace"), target
            else:
                raise NavigationError(f"Unsupported scheme: {scheme or '(none)'}")
        except NavigationError as exc:
            self.ready_state = "complete"
            self.console.error(f"Navigation to {target} failed: {exc}")
            raise
        except (HttpClientError, OSError, ValueError) as exc:
            self.ready_state = "complete"
            self.console.error(f"Navigation to {target} failed: {exc}")
            raise NavigationError(f"Failed to load {target}: {exc}") from exc

        logger.debug("navigated url=%s", final_url)
        self.load(html, url=final_url)

    @property
    def document(self) -> BeautifulSoup:
        return self._document

    @property
    def body(self) -> Tag:
        body = self._document.find("body")
        return body if isinstance(body, Tag) else self._document

    @property
    def title(self) -> str:
        el = self._document.find("title")
        return " ".join(self.text_content(el).split()) if isinstance(el, Tag) else ""

    def is_connected(self, node: Any) -> bool:
        cur = node
        while cur is not None:
            if cur is self._document:
                return True
            cur = cur.parent
        return False

    # ─────────────────────────────────────────────────────────────────────────
    # Tree structure (shadow roots, slots, tree scopes)
    # ─────────────────────────────────────────────────────────────────────────

    def shadow_root(self, host: Any) -> Tag | None:
        if not is_element(host) or host.name == "template":
            return None
        hit = self._shadow_roots.get(id(host))
        if hit is not None and hit[0] is host:
            return hit[1]
        shadow = None
        for child in host.children:
            if (
                isinstance(child, Tag)
                and child.name == "template"
                and (child.has_attr("shadowrootmode") or child.has_attr("shadowroot"))
            ):
                shadow = child
                break
        # Dropped by invalidate_layout(), which every Page mutator calls.
        self._shadow_roots[id(host)] = (host, shadow)
        return shadow

    def is_shadow_root(self, node: Any) -> bool:
        return (
            isinstance(node, Tag)
            and node.name == "template"
            and node.parent is not None
            and self.shadow_root(node.parent) is node
        )

    def light_children(self, node: Any) -> list[Any]:
        if not isinstance(node, Tag):
            return []
        shadow = self.shadow_root(node)
        return [c for c in node.children if c is not shadow]

    def tree_root(self, node: Any) -> Any:
        """Document, shadow root or detached fragment root that scopes ``node``."""
        cur = node
        while True:
            if self.is_shadow_root(cur):
                return cur
            parent = cur.parent
            if parent is None:
                return cur
            cur = parent

    def iter_tree(self, root: Any) -> Iterator[Tag]:
        """Descendant elements of ``root`` in tree order, not entering shadow roots."""
        stack = list(reversed(self.light_children(root)))
        while stack:
            node = stack.pop()
            if not is_element(node):
                continue
            yield node
            stack.extend(reversed(self.light_children(node)))

    def _scope_index(self, root: Any) -> _ScopeIndex:
        hit = self._scopes.get(id(root))
        if hit is not None and hit[0] is root:
            return hit[1]
        index = _ScopeIndex()
        for el in self.iter_tree(root):
            el_id = attr(el, "id")
            if el_id:
                index.ids.setdefault(el_id, el)
            if el.name == "label":
                target = attr(el, "for")
                if target:
                    index.label_for.setdefault(target, []).append(el)
        self._scopes[id(root)] = (root, index)
        return index

    def get_element_by_id(self, element_id: str, *, context: Any = None) -> Tag | None:
        if not element_id:
            return None
        root = self.tree_root(context) if context is not None else self._document
        return self._scope_index(root).ids.get(element_id)

    def query_selector_all(self, pattern: str) -> list[Tag]:
        try:
            matches = self._document.select(pattern)
        except SelectorSyntaxError as exc:
            raise InvalidSelectorError(f"Invalid selector {pattern!r}: {exc}") from exc
        # Like document.querySelectorAll: shadow trees are not pierced.
        return [m for m in matches if self.tree_root(m) is self._document]

    def closest(self, node: Any, name: str) -> Tag | None:
        cur = node
        while is_element(cur) and not self.is_shadow_root(cur):
            if cur.name == name:
                return cur
            cur = cur.parent
        return None

    def _slot_name_of(self, node: Any) -> str | None:
        if is_element(node):
            return attr(node, "slot") or ""
        if is_text(node) and str(node).strip():
            return ""
        return None

    def _find_slot(self, shadow: Tag, name: str) -> Tag | None:
        for el in self.iter_tree(shadow):
            if el.name == "slot" and (attr(el, "name") or "") == name:
                return el
        return None

    def assigned_nodes(self, slot: Any) -> list[Any]:
        if not is_element(slot) or slot.name != "slot":
            return []
        shadow = self.tree_root(slot)
        if not self.is_shadow_root(shadow):
            return []
        name = attr(slot, "name") or ""
        if self._find_slot(shadow, name) is not slot:
            return []
        return [c for c in self.light_children(shadow.parent) if self._slot_name_of(c) == name]

    def assigned_slot(self, node: Any) -> Tag | None:
        parent = node.parent
        if not is_element(parent):
            return None
        shadow = self.shadow_root(parent)
        if shadow is None or node is shadow:
            return None
        name = self._slot_name_of(node)
        if name is None:
            return None
        return self._find_slot(shadow, name)

    def flattened_children(self, node: Any) -> list[Any]:
        """Children in the flattened tree: slot redirection plus attached shadow content."""
        if is_element(node) and node.name == "slot":
            assigned = self.assigned_nodes(node)
            if assigned:
                return assigned
        children = [c for c in self.light_children(node) if self.assigned_slot(c) is None]
        shadow = self.shadow_root(node)
        if shadow is not None:
            children.extend(self.light_children(shadow))
        return children

    def flat_parent(self, node: Any) -> Any:
        slot = self.assigned_slot(node)
        if slot is not None:
            return slot
        parent = node.parent
        if parent is not None and self.is_shadow_root(parent):
            return parent.parent
        return parent

    def text_content(self, node: Any) -> str:
        """DOM textContent: light-tree text only, template contents excluded."""
        if node is None:
            return ""
        if is_text(node):
            return str(node)
        if not isinstance(node, Tag) or (is_element(node) and node.name == "template"):
            return ""
        parts: list[str] = []
        stack = list(reversed(list(node.children)))
        while stack:
            cur = stack.pop()
            if is_text(cur):
                parts.append(str(cur))
            elif is_element(cur) and cur.name != "template":
                stack.extend(reversed(list(cur.children)))
        return "".join(parts)

    # ─────────────────────────────────────────────────────────────────────────
    # Style and layout
    # ─────────────────────────────────────────────────────────────────────────

    def _display(self, el: Tag) -> str:
        display = parse_inline_style(attr(el, "style")).get("display")
        if display:
            return display
        if el.name in NON_RENDERED_TAGS or el.has_attr("hidden"):
            return "none"
        if el.name == "input" and (attr(el, "type") or "").strip().lower() == "hidden":
            return "none"
        if el.name == "slot":
            return "contents"
        return "block"

    def _visibility(self, el: Tag) -> str:
        cur: Any = el
        while is_element(cur):
            vis = parse_inline_style(attr(cur, "style")).get("visibility")
            if vis and vis != "inherit":
                return "hidden" if vis == "collapse" else vis
            cur = self.flat_parent(cur)
        return "visible"

    def computed_style(self, el: Tag) -> dict[str, str]:
        return {"display": self._display(el), "visibility": self._visibility(el)}

    def invalidate_layout(self) -> None:
        self._layout.clear()
        self._shadow_roots.clear()
        self._scopes.clear()

    def _cached_box(self, el: Tag) -> tuple[float, float] | None:
        hit = self._layout.get(id(el))
        if hit is not None and hit[0] is el:
            return hit[1]
        return None

    def _is_unrendered(self, el: Tag) -> bool:
        if self._display(el) == "none":
            return True
        # Light children of a shadow host render only through a slot.
        parent = el.parent
        return (
            is_element(parent)
            and self.shadow_root(parent) is not None
            and not self.is_shadow_root(el)
            and self.assigned_slot(el) is None
        )

    def _measure(self, el: Tag) -> tuple[float, float]:
        width = height = 0.0
        for child in self.flattened_children(el):
            if is_text(child):
                text = " ".join(str(child).split())
                if text:
                    width = max(width, _CHAR_WIDTH * len(text))
                    height += _LINE_HEIGHT
            elif is_element(child):
                w, h = self._cached_box(child) or (0.0, 0.0)
                width = max(width, w)
                height += h

        intrinsic = INTRINSIC_SIZES.get(el.name)
        if el.name == "img":
            w_attr, h_attr = _px(attr(el, "width")), _px(attr(el, "height"))
            intrinsic = (
                w_attr if w_attr is not None else INTRINSIC_SIZES["img"][0],
                h_attr if h_attr is not None else INTRINSIC_SIZES["img"][1],
            )
            return intrinsic
        if intrinsic is not None:
            width, height = max(width, intrinsic[0]), max(height, intrinsic[1])
        return width, height

    def bounding_box(self, el: Tag) -> tuple[float, float]:
        """(width, height) of the element's border box."""
        if not is_element(el):
            return (0.0, 0.0)
        cached = self._cached_box(el)
        if cached is not None:
            return cached

        # Iterative post-order so deep documents do not exhaust the recursion limit.
        stack: list[tuple[Tag, bool]] = [(el, False)]
        while stack:
            node, measured_children = stack.pop()
            if self._cached_box(node) is not None:
                continue
            if not measured_children:
                if self._is_unrendered(node):
                    self._layout[id(node)] = (node, (0.0, 0.0))
                    continue
                stack.append((node, True))
                for child in self.flattened_children(node):
                    if is_element(child) and self._cached_box(child) is None:
                        stack.append((child, False))
                continue
            width, height = self._measure(node)
            style = parse_inline_style(attr(node, "style"))
            w_px, h_px = _px(style.get("width")), _px(style.get("height"))
            self._layout[id(node)] = (
                node,
                (w_px if w_px is not None else width, h_px if h_px is not None else height),
            )
        return self._cached_box(el) or (0.0, 0.0)

    def scroll_into_view(self, el: Tag, *, block: str = "center", inline: str = "center") -> None:
        logger.debug("scroll_into_view tag=%s block=%s inline=%s", el.name, block, inline)
        self.scroll_target = el

    # ─────────────────────────────────────────────────────────────────────────
    # Form state
    # ─────────────────────────────────────────────────────────────────────────

    def options(self, select: Tag) -> list[Tag]:
        return [el for el in self.iter_tree(select) if el.name == "option"]

    def option_value(self, option: Tag) -> str:
        val = attr(option, "value")
        return val if val is not None else " ".join(self.text_content(option).split())

    def selected_options(self, select: Tag) -> list[Tag]:
        opts = self.options(select)
        explicit = [o for o in opts if o.has_attr("selected")]
        if select.has_attr("multiple"):
            return explicit
        if explicit:
            return [explicit[-1]]
        return opts[:1]

    def is_selected(self, option: Tag) -> bool:
        select = self.closest(option, "select")
        if select is None:
            return option.has_attr("selected")
        return any(o is option for o in self.selected_options(select))

    def value(self, el: Tag) -> str:
        if el.name == "textarea":
            return self.text_content(el)
        if el.name == "select":
            selected = self.selected_options(el)
            return self.option_value(selected[0]) if selected else ""
        return attr(el, "value") or ""

    def set_value(self, el: Tag, value: str) -> None:
        if el.name == "input":
            el["value"] = value
        elif el.name == "textarea":
            el.string = value
        elif el.name == "select":
            match = next((o for o in self.options(el) if self.option_value(o) == value), None)
            for opt in self.options(el):
                if opt.has_attr("selected"):
                    del opt["selected"]
            if match is not None:
                match["selected"] = ""
        else:
            raise ValueError(f"<{el.name}> has no value")
        self.invalidate_layout()

    def set_text(self, el: Tag, text: str) -> None:
        el.string = text
        self.invalidate_layout()

    def is_checked(self, el: Tag) -> bool:
        return el.has_attr("checked")

    def set_checked(self, el: Tag, checked: bool) -> None:
        if not checked:
            if el.has_attr("checked"):
                del el["checked"]
            return
        el["checked"] = ""
        group = attr(el, "name")
        if (attr(el, "type") or "").lower() == "radio" and group:
            scope = self.closest(el, "form") or self.tree_root(el)
            for other in self.iter_tree(scope):
                if (
                    other is not el
                    and other.name == "input"
                    and (attr(other, "type") or "").lower() == "radio"
                    and attr(other, "name") == group
                    and other.has_attr("checked")
                ):
                    del other["checked"]

    def is_indeterminate(self, el: Tag) -> bool:
        hit = self._indeterminate.get(id(el))
        return hit is not None and hit is el

    def set_indeterminate(self, el: Tag, flag: bool) -> None:
        if flag:
            self._indeterminate[id(el)] = el
        else:
            self._indeterminate.pop(id(el), None)

    def is_disabled(self, el: Tag) -> bool:
        return el.name in DISABLEABLE_TAGS and el.has_attr("disabled")

    def labels(self, el: Tag) -> list[Tag]:
        """Labels associated with a labelable control, in tree order."""
        if not is_element(el) or el.name not in LABELABLE_TAGS:
            return []
        out: list[Tag] = []
        el_id = attr(el, "id")
        if el_id:
            out = list(self._scope_index(self.tree_root(el)).label_for.get(el_id, ()))
        wrapping = self.closest(el, "label")
        if wrapping is not None and not attr(wrapping, "for") and not any(lbl is wrapping for lbl in out):
            out.append(wrapping)
        return out

    def is_content_editable(self, el: Tag) -> bool:
        cur: Any = el
        while is_element(cur):
            raw = attr(cur, "contenteditable")
            if raw is not None:
                return raw.strip().lower() in ("", "true", "plaintext-only")
            cur = cur.parent
        return False

    # ─────────────────────────────────────────────────────────────────────────
    # Focus and events
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def active_element(self) -> Tag | None:
        if self._active is not None and self.is_connected(self._active):
            return self._active
        return None

    def focus(self, el: Tag) -> None:
        if self.active_element is el:
            return
        self.blur()
        self._active = el
        self.dispatch_event(el, "focus", bubbles=False)

    def blur(self) -> None:
        current = self.active_element
        self._active = None
        if current is not None:
            self.dispatch_event(current, "blur", bubbles=False)

    def add_event_listener(self, el: Any, event_type: str, listener: EventListener) -> None:
        self._listeners.setdefault(id(el), []).append((el, event_type, listener))

    def dispatch_event(self, target: Any, event_type: str, *, bubbles: bool = True, **detail: Any) -> DomEvent:
        event = DomEvent(type=event_type, target=target, detail=dict(detail), bubbles=bubbles)
        self.events.append(event)

        path: list[Any] = [target]
        if bubbles:
            cur = self.flat_parent(target) if target is not self._document else None
            while cur is not None:
                path.append(cur)
                cur = self.flat_parent(cur) if cur is not self._document else None

        for node in path:
            for owner, kind, listener in list(self._listeners.get(id(node), ())):
                if owner is not node or kind != event_type:
                    continue
                try:
                    listener(event)
                except Exception as exc:  # noqa: BLE001
                    # Uncaught listener errors surface in the page console, as in a browser.
                    self.console.error(exc)
        return event

    def activate(self, el: Tag) -> None:
        """Native activation behaviour (HTMLElement.click())."""
        event = self.dispatch_event(el, "click", native=True)
        if event.default_prevented:
            return

        if el.name == "input":
            kind = (attr(el, "type") or "").strip().lower()
            if kind == "checkbox" and not self.is_disabled(el):
                self.set_checked(el, not self.is_checked(el))
                self.set_indeterminate(el, False)
                self.dispatch_event(el, "input")
                self.dispatch_event(el, "change")
                return
            if kind == "radio" and not self.is_disabled(el) and not self.is_checked(el):
                self.set_checked(el, True)
                self.dispatch_event(el, "input")
                self.dispatch_event(el, "change")
                return

        if el.name == "label":
            control = None
            target_id = attr(el, "for")
            if target_id:
                control = self.get_element_by_id(target_id, context=el)
            else:
                control = next((d for d in self.iter_tree(el) if d.name in LABELABLE_TAGS), None)
            if control is not None and control is not el:
                self.activate(control)
            return

        link = self.closest(el, "a")
        href = attr(link, "href") if link is not None else None
        if self.follow_links and href and not href.startswith("#") and not href.lower().startswith("javascript:"):
            try:
                self.navigate(href)
            except NavigationError as exc:
                # The click itself succeeded; the failed load is reported in the console.
                logger.info("link navigation failed href=%s reason=%s", href, exc)

    # ─────────────────────────────────────────────────────────────────────────
    # Mutation helpers
    # ─────────────────────────────────────────────────────────────────────────

    def set_attribute(self, el: Tag, name: str, value: str) -> None:
        el[name] = value
        self.invalidate_layout()

    def remove_attribute(self, el: Tag, name: str) -> None:
        if el.has_attr(name):
            del el[name]
        self.invalidate_layout()

    def remove(self, el: Tag) -> None:
        el.extract()
        self.invalidate_layout()
