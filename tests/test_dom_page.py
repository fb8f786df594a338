from __future__ import annotations

import pytest

CARD = """
<html><head><title>  Shop
  page </title></head>
<body>
  <my-card id="card">
    <template shadowrootmode="open">
      <h2 id="inner-title">Card</h2>
      <slot name="action"></slot>
      <button id="inner">Inner</button>
    </template>
    <button slot="action" id="buy">Buy</button>
    <button id="orphan">Orphan</button>
  </my-card>
</body></html>
"""


def test_title_is_whitespace_normalized() -> None:
    from mcp_servers.tab_bridge.dom import Page

    page = Page(CARD, url="https://shop.test/")
    assert page.title == "Shop page"
    assert page.url == "https://shop.test/"


def test_shadow_root_is_not_a_light_child() -> None:
    from mcp_servers.tab_bridge.dom import Page, is_element

    page = Page(CARD)
    host = page.document.find(id="card")
    shadow = page.shadow_root(host)
    assert shadow is not None and shadow.name == "template"
    assert page.is_shadow_root(shadow)
    light = [c for c in page.light_children(host) if is_element(c)]
    assert [c["id"] for c in light] == ["buy", "orphan"]


def test_structure_lookups_follow_mutations() -> None:
    from mcp_servers.tab_bridge.dom import Page

    page = Page(CARD)
    host = page.document.find(id="card")
    shadow = page.shadow_root(host)
    assert page.get_element_by_id("orphan") is not None

    page.remove(shadow)
    assert page.shadow_root(host) is None
    page.remove(page.document.find(id="orphan"))
    assert page.get_element_by_id("orphan") is None


def test_slot_assignment_and_flattened_children() -> None:
    from mcp_servers.tab_bridge.dom import Page, is_element

    page = Page(CARD)
    host = page.document.find(id="card")
    buy = page.document.find(id="buy")
    slot = page.shadow_root(host).find("slot")

    assert page.assigned_slot(buy) is slot
    assert [n["id"] for n in page.assigned_nodes(slot)] == ["buy"]
    flat = [c for c in page.flattened_children(host) if is_element(c)]
    assert [c.name for c in flat] == ["button", "h2", "slot", "button"]
    assert flat[0]["id"] == "orphan"
    assert page.flat_parent(buy) is slot


def test_unassigned_host_child_has_no_box() -> None:
    from mcp_servers.tab_bridge.dom import Page

    page = Page(CARD)
    assert page.bounding_box(page.document.find(id="orphan")) == (0.0, 0.0)
    width, height = page.bounding_box(page.document.find(id="buy"))
    assert width > 0 and height > 0


def test_get_element_by_id_is_scoped_to_tree() -> None:
    from mcp_servers.tab_bridge.dom import Page

    page = Page(CARD)
    inner = page.document.find(id="inner")
    assert page.get_element_by_id("inner") is None
    assert page.get_element_by_id("inner-title", context=inner) is not None
    assert page.get_element_by_id("buy", context=inner) is None


def test_query_selector_all_does_not_pierce_shadow_roots() -> None:
    from mcp_servers.tab_bridge.dom import Page

    page = Page(CARD)
    ids = [el["id"] for el in page.query_selector_all("button")]
    assert ids == ["buy", "orphan"]


def test_query_selector_all_rejects_malformed_patterns() -> None:
    from mcp_servers.tab_bridge.dom import InvalidSelectorError, Page

    page = Page("<body><p>x</p></body>")
    with pytest.raises(InvalidSelectorError):
        page.query_selector_all("p[")


def test_computed_style_and_visibility_inheritance() -> None:
    from mcp_servers.tab_bridge.dom import Page

    page = Page(
        '<body><div id="v" style="visibility: hidden"><span id="s">x</span></div>'
        '<p id="h" hidden>y</p><p id="shown" hidden style="display:block">z</p>'
        '<input type="hidden" id="hid"></body>'
    )
    doc = page.document
    assert page.computed_style(doc.find(id="s"))["visibility"] == "hidden"
    assert page.computed_style(doc.find(id="h"))["display"] == "none"
    assert page.computed_style(doc.find(id="shown"))["display"] == "block"
    assert page.computed_style(doc.find(id="hid"))["display"] == "none"


def test_bounding_box_explicit_and_intrinsic_sizes() -> None:
    from mcp_servers.tab_bridge.dom import Page

    page = Page(
        '<body><div id="z" style="width:0px;height:0">text</div><input id="i">'
        '<img id="pixel" alt="" width="0" height="0"><div id="empty"></div></body>'
    )
    doc = page.document
    assert page.bounding_box(doc.find(id="z")) == (0.0, 0.0)
    assert page.bounding_box(doc.find(id="i")) == (150.0, 21.0)
    assert page.bounding_box(doc.find(id="pixel")) == (0.0, 0.0)
    assert page.bounding_box(doc.find(id="empty")) == (0.0, 0.0)


def test_bounding_box_handles_deep_documents() -> None:
    from mcp_servers.tab_bridge.dom import Page

    depth = 3000
    page = Page("<body>" + "<div>" * depth + "leaf" + "</div>" * depth + "</body>")
    width, height = page.bounding_box(page.body)
    assert width == 32.0 and height == 16.0


def test_form_state_helpers() -> None:
    from mcp_servers.tab_bridge.dom import Page

    page = Page(
        '<body><form><input type="radio" name="c" id="r" checked><input type="radio" name="c" id="g"></form>'
        '<select id="s"><option value="a">A</option><option>B</option></select>'
        '<textarea id="t">hello</textarea></body>'
    )
    doc = page.document
    select = doc.find(id="s")
    assert page.value(select) == "a"
    page.set_value(select, "B")
    assert page.value(select) == "B"

    page.set_checked(doc.find(id="g"), True)
    assert page.is_checked(doc.find(id="g"))
    assert not page.is_checked(doc.find(id="r"))

    assert page.value(doc.find(id="t")) == "hello"
    page.set_value(doc.find(id="t"), "bye")
    assert page.value(doc.find(id="t")) == "bye"


def test_labels_for_and_wrapping() -> None:
    from mcp_servers.tab_bridge.dom import Page

    page = Page('<body><label for="q">Query</label><label>Wrap <input id="q"></label></body>')
    labels = page.labels(page.document.find(id="q"))
    assert [" ".join(page.text_content(lbl).split()) for lbl in labels] == ["Query", "Wrap"]


def test_events_bubble_and_listener_errors_reach_console() -> None:
    from mcp_servers.tab_bridge.dom import Page

    page = Page('<body><div id="outer"><button id="b">B</button></div></body>')
    seen: list[str] = []
    outer = page.document.find(id="outer")
    button = page.document.find(id="b")
    page.add_event_listener(outer, "click", lambda ev: seen.append(ev.target["id"]))

    def _boom(ev) -> None:  # noqa: ANN001
        raise RuntimeError("listener exploded")

    page.add_event_listener(button, "click", _boom)
    page.dispatch_event(button, "click")

    assert seen == ["b"]
    errors = [e for e in page.console.entries() if e.level == "error"]
    assert errors and "listener exploded" in errors[0].text


def test_navigate_data_url_and_loader() -> None:
    from mcp_servers.tab_bridge.dom import Page

    visited: list[str] = []

    def _loader(url: str) -> tuple[str, str]:
        visited.append(url)
        return f"<title>{url.rsplit('/', 1)[-1]}</title>", url

    page = Page(loader=_loader)
    page.navigate("data:text/html,%3Ctitle%3EHi%3C%2Ftitle%3E")
    assert page.title == "Hi"

    page.navigate("https://example.test/a")
    page.navigate("b")
    assert visited == ["https://example.test/a", "https://example.test/b"]
    assert page.title == "b"


def test_navigate_failure_raises_and_logs() -> None:
    from mcp_servers.tab_bridge.dom import NavigationError, Page

    page = Page("<body><p>keep</p></body>", url="about:blank")
    with pytest.raises(NavigationError):
        page.navigate("ftp://example.test/file")
    assert page.document.find("p") is not None
    assert any(e.level == "error" for e in page.console.entries())
