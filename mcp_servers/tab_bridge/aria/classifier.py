"""
Role / accessible-name / state classification for page elements.

One ``Classifier`` serves both snapshots and role-based selector resolution so that a
row that appears in a snapshot can always be found again by ``{role, name}``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from ..dom import Page, attr, is_element
from .roles import DEFAULT_TABLES, RoleTables

_WS_RE = re.compile(r"\s+")
_INT_PREFIX_RE = re.compile(r"^\s*([+-]?\d+)")
_HEADING_RE = re.compile(r"^h([1-6])$")


def normalize_whitespace(text: str | None) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def _parse_int(raw: str | None) -> int | None:
    m = _INT_PREFIX_RE.match(raw or "")
    return int(m.group(1)) if m else None


@dataclass(frozen=True, slots=True)
class Classification:
    role: str | None
    name: str = ""
    disabled: bool | None = None
    checked: str | None = None  # "true" | "false" | "mixed"
    expanded: bool | None = None
    pressed: str | None = None  # "true" | "false" | "mixed"
    selected: bool | None = None
    level: int | None = None
    focused: bool = False

    def states(self) -> tuple[str, ...]:
        out: list[str] = []
        if self.focused:
            out.append("focused")
        if self.checked is not None:
            out.append({"true": "checked", "mixed": "checked=mixed"}.get(self.checked, "unchecked"))
        if self.disabled:
            out.append("disabled")
        if self.expanded is not None:
            out.append("expanded" if self.expanded else "collapsed")
        if self.pressed is not None:
            out.append({"true": "pressed", "mixed": "pressed=mixed"}.get(self.pressed, "not-pressed"))
        if self.selected:
            out.append("selected")
        if self.level is not None:
            out.append(f"level={self.level}")
        return tuple(out)


class Classifier:
    def __init__(self, page: Page, tables: RoleTables = DEFAULT_TABLES) -> None:
        self.page = page
        self.tables = tables

    # ─────────────────────────────────────────────────────────────────────────
    # Role
    # ─────────────────────────────────────────────────────────────────────────

    def role(self, el: Any) -> str | None:
        if not is_element(el):
            return None
        explicit = (attr(el, "role") or "").split()
        if explicit:
            return explicit[0].lower()

        tag = el.name
        if tag == "a":
            return "link" if el.has_attr("href") else None
        if tag == "img":
            return "img" if el.has_attr("alt") else None
        if tag == "select":
            return "listbox" if el.has_attr("multiple") else "combobox"
        if tag == "input":
            kind = (attr(el, "type") or "").strip().lower()
            return self.tables.input_types.get(kind, self.tables.default_input_role)
        return self.tables.implicit.get(tag)

    # ─────────────────────────────────────────────────────────────────────────
    # Name
    # ─────────────────────────────────────────────────────────────────────────

    def name(self, el: Any, role: str | None = None) -> str:
        if not is_element(el):
            return ""
        page = self.page
        if role is None:
            role = self.role(el)

        labelledby = (attr(el, "aria-labelledby") or "").split()
        if labelledby:
            parts = []
            for ref_id in labelledby:
                target = page.get_element_by_id(ref_id, context=el)
                if target is not None:
                    parts.append(page.text_content(target))
            text = normalize_whitespace(" ".join(parts))
            if text:
                return text

        text = normalize_whitespace(attr(el, "aria-label"))
        if text:
            return text

        if el.name in ("input", "select", "textarea"):
            for label in page.labels(el):
                text = normalize_whitespace(page.text_content(label))
                if text:
                    return text
            wrapping = page.closest(el, "label")
            if wrapping is not None:
                text = normalize_whitespace(page.text_content(wrapping))
                if text:
                    return text

        if el.name == "img":
            text = normalize_whitespace(attr(el, "alt"))
            if text:
                return text

        for key in ("title", "placeholder"):
            text = normalize_whitespace(attr(el, key))
            if text:
                return text

        content = normalize_whitespace(page.text_content(el))
        if role in self.tables.name_from_content and content:
            return content

        if el.name == "textarea" or (el.name == "input" and role in self.tables.text_entry):
            text = normalize_whitespace(page.value(el))
            if text:
                return text

        return content[: self.tables.fallback_name_limit].rstrip()

    # ─────────────────────────────────────────────────────────────────────────
    # States
    # ─────────────────────────────────────────────────────────────────────────

    def _checked(self, el: Any) -> str | None:
        aria = (attr(el, "aria-checked") or "").strip().lower()
        if aria in ("true", "false", "mixed"):
            return aria
        if el.name == "input":
            if self.page.is_indeterminate(el):
                return "mixed"
            return "true" if self.page.is_checked(el) else "false"
        # Custom widgets without aria-checked expose no checked state.
        return None

    def _level(self, el: Any) -> int | None:
        level = _parse_int(attr(el, "aria-level"))
        if level is not None:
            return level
        m = _HEADING_RE.match(el.name)
        return int(m.group(1)) if m else None

    def classify(self, el: Any) -> Classification:
        role = self.role(el)
        focused = is_element(el) and self.page.active_element is el
        if role is None:
            return Classification(role=None, name=self.name(el, role), focused=focused)

        t = self.tables
        disabled = expanded = pressed = selected = checked = level = None
        if role in t.checked:
            checked = self._checked(el)
        if role in t.disabled:
            disabled = (attr(el, "aria-disabled") or "").strip().lower() == "true" or self.page.is_disabled(el)
        if role in t.expanded:
            raw = (attr(el, "aria-expanded") or "").strip().lower()
            expanded = {"true": True, "false": False}.get(raw)
        if role in t.pressed:
            raw = (attr(el, "aria-pressed") or "").strip().lower()
            pressed = raw if raw in ("true", "false", "mixed") else None
        if role in t.selected:
            selected = (attr(el, "aria-selected") or "").strip().lower() == "true" or (
                el.name == "option" and self.page.is_selected(el)
            )
        if role in t.level:
            level = self._level(el)

        return Classification(
            role=role,
            name=self.name(el, role),
            disabled=disabled,
            checked=checked,
            expanded=expanded,
            pressed=pressed,
            selected=selected,
            level=level,
            focused=focused,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Visibility and inclusion
    # ─────────────────────────────────────────────────────────────────────────

    def is_hidden(self, el: Any) -> bool:
        if (attr(el, "aria-hidden") or "").strip().lower() == "true":
            return True
        style = self.page.computed_style(el)
        if style["display"] == "none" or style["visibility"] == "hidden":
            return True
        width, height = self.page.bounding_box(el)
        return width == 0 and height == 0

    def include(self, role: str | None, el: Any = None) -> bool:
        if role is None:
            return False
        if role in self.tables.interactive or role in self.tables.structural:
            return True
        if role == "img":
            return el is not None and bool(normalize_whitespace(attr(el, "alt")))
        return False
