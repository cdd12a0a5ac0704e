import asyncio

import pytest
from bs4 import Tag

from dom_snapshot import cloner
from dom_snapshot.cascade import StyleResolver
from dom_snapshot.config import ExportConfig
from dom_snapshot.source import REF_ATTR, LiveElementState
from dom_snapshot.stylesheets import Sheet, parse_rules

from .conftest import make_session, run


def _clone(session, selector="#root"):
    node = session.source.select_one(selector)
    return run(cloner.clone_node(node, session, is_root=True))


def _page(body: str) -> str:
    return f"<html><body>{body}</body></html>"


def test_children_keep_source_order_when_they_finish_out_of_order(monkeypatch):
    original = cloner.clone_node
    delays = {"a": 0.03, "b": 0.0, "c": 0.01}

    async def slow(node, session, is_root=False):
        if isinstance(node, Tag) and node.get("id") in delays:
            await asyncio.sleep(delays[node["id"]])
        return await original(node, session, is_root)

    monkeypatch.setattr(cloner, "clone_node", slow)
    session = make_session(_page('<ul id="root"><li id="a"></li><li id="b"></li><li id="c"></li></ul>'))
    clone = _clone(session)
    assert [li["id"] for li in clone.find_all("li")] == ["a", "b", "c"]


def test_filter_excludes_whole_subtree():
    def no_ads(node):
        return not (isinstance(node, Tag) and node.name == "ad")

    session = make_session(
        _page('<div id="root"><ad><span>buy</span></ad><p>keep</p></div>'),
        ExportConfig(filter=no_ads),
    )
    clone = _clone(session)
    assert clone.find("ad") is None
    assert clone.find("span") is None
    assert clone.p.get_text() == "keep"


def test_filter_is_not_applied_to_root():
    session = make_session(_page('<div id="root"><p>x</p></div>'), ExportConfig(filter=lambda n: False))
    clone = _clone(session)
    assert clone.name == "div"
    assert list(clone.children) == []


def test_filter_sees_text_nodes():
    def no_text(node):
        return isinstance(node, Tag)

    session = make_session(_page('<p id="root">a<b>b</b>c</p>'), ExportConfig(filter=no_text))
    clone = _clone(session)
    assert clone.get_text() == ""
    assert clone.b is not None


def test_throwing_filter_propagates():
    def broken(node):
        raise ValueError("boom")

    session = make_session(_page('<div id="root"><p>x</p></div>'), ExportConfig(filter=broken))
    with pytest.raises(ValueError):
        _clone(session)


def test_source_tree_is_not_mutated():
    session = make_session(_page(f'<div id="root" {REF_ATTR}="1"><input id="i" value="a"></div>'))
    before = str(session.source.soup)
    clone = _clone(session)
    assert str(session.source.soup) == before
    assert clone is not session.source.select_one("#root")
    assert not clone.has_attr(REF_ATTR)


def test_canvas_with_bitmap_becomes_image():
    live = {"c1": LiveElementState(bitmap="data:image/png;base64,AAAA")}
    session = make_session(
        _page(f'<div id="root"><canvas {REF_ATTR}="c1">fallback</canvas></div>'), live=live
    )
    clone = _clone(session)
    assert clone.canvas is None
    assert clone.img["src"] == "data:image/png;base64,AAAA"


def test_blank_canvas_is_cloned_without_children():
    session = make_session(_page('<div id="root"><canvas width="10">fallback</canvas></div>'))
    clone = _clone(session)
    assert clone.canvas["width"] == "10"
    assert clone.canvas.get_text() == ""


def test_video_with_poster_becomes_image():
    session = make_session(
        _page(
            '<div id="root"><video id="v" class="wide" poster="/p.jpg" autoplay>'
            '<track kind="captions" src="c.vtt"></video></div>'
        )
    )
    img = _clone(session).img
    assert img["src"] == "https://example.com/p.jpg"
    assert img["id"] == "v" and img["class"] == ["wide"]
    assert not img.has_attr("autoplay")
    assert img.find("track") is None


def test_video_without_poster_keeps_children():
    session = make_session(
        _page(
            '<div id="root"><video controls><source src="m.mp4">'
            '<track kind="captions" src="c.vtt"></video></div>'
        )
    )
    video = _clone(session).video
    assert video.source["src"] == "m.mp4"
    assert video.track["kind"] == "captions"


def test_form_values_come_from_live_state():
    live = {
        "t": LiveElementState(value="typed text"),
        "i": LiveElementState(value="new"),
        "s": LiveElementState(value="b"),
    }
    session = make_session(
        _page(
            '<form id="root">'
            f'<textarea {REF_ATTR}="t">old</textarea>'
            f'<input {REF_ATTR}="i" value="old">'
            f'<select {REF_ATTR}="s"><option value="a" selected>A</option>'
            '<option value="b">B</option><option value="c">C</option></select>'
            "</form>"
        ),
        live=live,
    )
    clone = _clone(session)
    assert clone.textarea.string == "typed text"
    assert clone.input["value"] == "new"
    selected = [o["value"] for o in clone.find_all("option") if o.has_attr("selected")]
    assert selected == ["b"]


def test_select_without_live_state_keeps_markup_choice():
    session = make_session(
        _page(
            '<select id="root"><optgroup label="g"><option>One</option>'
            "<option selected>Two</option></optgroup></select>"
        )
    )
    clone = _clone(session)
    selected = [o.get_text() for o in clone.find_all("option") if o.has_attr("selected")]
    assert selected == ["Two"]


SHADOW = (
    '<my-card id="root"><template shadowrootmode="open">'
    '<h2><slot name="title">Untitled</slot></h2><slot></slot></template>'
    "{light}</my-card>"
)


def test_shadow_host_clones_shadow_tree_with_slotted_content():
    session = make_session(_page(SHADOW.format(light='<span slot="title">T</span><p>body</p>')))
    clone = _clone(session)
    assert clone.find("template") is None
    title_slot, default_slot = clone.find_all("slot", recursive=True)
    assert title_slot.span.get_text() == "T"
    assert default_slot.p.get_text() == "body"
    assert default_slot.span is None


def test_unassigned_slot_falls_back_to_its_own_children():
    session = make_session(_page(SHADOW.format(light="")))
    clone = _clone(session)
    title_slot = clone.find("slot", attrs={"name": "title"})
    assert title_slot.get_text() == "Untitled"


def _computed_session(css: str, body: str):
    session = make_session(_page(body))
    sheet = Sheet("style", None, parse_rules(css, session.source.base_url))
    session.styles = StyleResolver(session.source, [sheet])
    return session


def test_computed_style_is_copied_inline():
    session = _computed_session("p{color:red; transform-origin:0 0}", '<div id="root"><p>x</p></div>')
    style = _clone(session).p["style"]
    assert "color: red;" in style
    assert "transform-origin: 0 0;" in style


def test_pseudo_elements_become_generated_rules():
    session = _computed_session("p::after{content:'!'}", '<div id="root"><p class="note">x</p></div>')
    p = _clone(session).p
    generated = [c for c in p["class"] if c != "note"]
    assert len(generated) == 1 and generated[0].startswith("u")
    assert p.style.string == f'.{generated[0]}::after{{content: "!";}}'


def test_pseudo_element_without_content_is_skipped():
    session = _computed_session("p::before{color:red}", '<div id="root"><p>x</p></div>')
    p = _clone(session).p
    assert p.style is None
    assert not p.has_attr("class")
