from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

IMPLICIT_ROLES: Mapping[str, str] = MappingProxyType(
    {
        "button": "button",
        "textarea": "textbox",
        "h1": "heading",
        "h2": "heading",
        "h3": "heading",
        "h4": "heading",
        "h5": "heading",
        "h6": "heading",
        "nav": "navigation",
        "main": "main",
        "header": "banner",
        "footer": "contentinfo",
        "aside": "complementary",
        "section": "region",
        "article": "article",
        "form": "form",
        "table": "table",
        "ul": "list",
        "ol": "list",
        "li": "listitem",
        "dialog": "dialog",
        "td": "cell",
        "th": "columnheader",
    }
)

INPUT_TYPE_ROLES: Mapping[str, str] = MappingProxyType(
    {
        "button": "button",
        "checkbox": "checkbox",
        "radio": "radio",
        "text": "textbox",
        "email": "textbox",
        "password": "textbox",
        "tel": "textbox",
        "url": "textbox",
        "search": "searchbox",
        "number": "spinbutton",
        "range": "slider",
    }
)

INTERACTIVE_ROLES = frozenset(
    {
        "button",
        "link",
        "textbox",
        "checkbox",
        "radio",
        "combobox",
        "searchbox",
        "slider",
        "spinbutton",
        "menuitem",
        "menuitemcheckbox",
        "menuitemradio",
        "tab",
        "switch",
        "option",
        "treeitem",
    }
)

STRUCTURAL_ROLES = frozenset(
    {
        "heading",
        "navigation",
        "main",
        "banner",
        "contentinfo",
        "complementary",
        "region",
        "article",
        "form",
        "search",
    }
)

# Roles whose accessible name comes from their text content.
NAME_FROM_CONTENT_ROLES = frozenset({"button", "link", "heading", "menuitem", "tab"})

TEXT_ENTRY_ROLES = frozenset({"textbox", "searchbox", "spinbutton"})

CHECKED_ROLES = frozenset({"checkbox", "radio", "menuitemcheckbox", "menuitemradio", "switch"})

DISABLED_ROLES = frozenset(
    {
        "button",
        "checkbox",
        "combobox",
        "gridcell",
        "link",
        "listbox",
        "menuitem",
        "menuitemcheckbox",
        "menuitemradio",
        "option",
        "radio",
        "searchbox",
        "slider",
        "spinbutton",
        "switch",
        "tab",
        "textbox",
    }
)

EXPANDED_ROLES = frozenset({"button", "combobox", "disclosure", "menu", "menubar", "navigation", "tab"})

PRESSED_ROLES = frozenset({"button"})

SELECTED_ROLES = frozenset({"option", "tab", "treeitem", "gridcell"})

LEVEL_ROLES = frozenset({"heading", "treeitem"})

FALLBACK_NAME_LIMIT = 100


@dataclass(frozen=True, slots=True)
class RoleTables:
    """Read-only lookup data for role, name and state computation."""

    implicit: Mapping[str, str] = field(default_factory=lambda: IMPLICIT_ROLES)
    input_types: Mapping[str, str] = field(default_factory=lambda: INPUT_TYPE_ROLES)
    default_input_role: str = "textbox"
    interactive: frozenset[str] = INTERACTIVE_ROLES
    structural: frozenset[str] = STRUCTURAL_ROLES
    name_from_content: frozenset[str] = NAME_FROM_CONTENT_ROLES
    text_entry: frozenset[str] = TEXT_ENTRY_ROLES
    checked: frozenset[str] = CHECKED_ROLES
    disabled: frozenset[str] = DISABLED_ROLES
    expanded: frozenset[str] = EXPANDED_ROLES
    pressed: frozenset[str] = PRESSED_ROLES
    selected: frozenset[str] = SELECTED_ROLES
    level: frozenset[str] = LEVEL_ROLES
    fallback_name_limit: int = FALLBACK_NAME_LIMIT


DEFAULT_TABLES = RoleTables()
