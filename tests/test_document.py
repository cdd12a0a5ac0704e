import pytest

from dom_snapshot.config import ExportConfig, StyleOverrides
from dom_snapshot.document import (
    DATA_URL_PREFIX,
    XHTML_NS,
    apply_style_overrides,
    create_document,
    css_property_name,
    data_url_to_document,
    document_to_data_url,
    serialize_document,
)


def test_empty_document_shape():
    text = serialize_document(create_document())
    assert text.startswith(
        '<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.1//EN" '
        '"http://www.w3.org/TR/xhtml11/DTD/xhtml11.dtd">'
    )
    assert f'<html xmlns="{XHTML_NS}"><head></head><body></body></html>' in text


def test_title_and_favicon():
    doc = create_document(ExportConfig(doc_title="Snap & co", doc_favicon_url="/favicon.png"))
    assert doc.title.string == "Snap & co"
    link = doc.head.link
    assert link["type"] == "image/png"
    assert link["href"] == "/favicon.png"
    text = serialize_document(doc)
    assert 'rel="icon"' in text
    assert "<title>Snap &amp; co</title>" in text


def test_data_url_round_trip():
    doc = create_document(ExportConfig(doc_title="a b é"))
    url = document_to_data_url(doc)
    assert url.startswith(DATA_URL_PREFIX)
    assert " " not in url and "<" not in url
    assert data_url_to_document(url) == serialize_document(doc)


def test_data_url_to_document_rejects_other_urls():
    with pytest.raises(ValueError):
        data_url_to_document("data:text/html,<p>")


def test_css_property_name():
    assert css_property_name("backgroundColor") == "background-color"
    assert css_property_name("margin-top") == "margin-top"
    assert css_property_name("color") == "color"


def test_style_overrides():
    doc = create_document()
    node = doc.new_tag("div", attrs={"style": "color: red", "class": "card"})
    doc.body.append(node)
    overrides = StyleOverrides(
        html={"background": "white"},
        body={"margin": "0"},
        node={"backgroundColor": "blue", "color": ""},
        selectors={".card": {"padding": "2px"}},
    )
    apply_style_overrides(doc, node, overrides)
    assert doc.html["style"] == "background: white;"
    assert doc.body["style"] == "margin: 0;"
    assert node["style"] == "background-color: blue; padding: 2px;"


def test_empty_overrides_touch_nothing():
    doc = create_document()
    apply_style_overrides(doc, doc.body, StyleOverrides())
    assert not doc.body.has_attr("style")
