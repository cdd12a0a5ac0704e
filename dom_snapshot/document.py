import re
from typing import Mapping, Optional
from urllib.parse import unquote

from bs4 import BeautifulSoup, Doctype, Tag
from bs4.formatter import XMLFormatter

from .config import ExportConfig, StyleOverrides
from .css import StyleDeclaration
from .urls import encode_uri_component, get_mime_type

XHTML_NS = "http://www.w3.org/1999/xhtml"
XHTML_PUBLIC_ID = "-//W3C//DTD XHTML 1.1//EN"
XHTML_SYSTEM_ID = "http://www.w3.org/TR/xhtml11/DTD/xhtml11.dtd"
DATA_URL_PREFIX = "data:application/xhtml+xml;charset=utf-8,"

CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def create_document(config: Optional[ExportConfig] = None) -> BeautifulSoup:
    config = config or ExportConfig()
    doc = BeautifulSoup("", "html.parser")
    doc.append(Doctype.for_name_and_ids("html", XHTML_PUBLIC_ID, XHTML_SYSTEM_ID))
    html = doc.new_tag("html", attrs={"xmlns": XHTML_NS})
    head = doc.new_tag("head")
    if config.doc_title:
        title = doc.new_tag("title")
        title.string = config.doc_title
        head.append(title)
    if config.doc_favicon_url:
        link = doc.new_tag(
            "link",
            attrs={
                "rel": "icon",
                "type": get_mime_type(config.doc_favicon_url),
                "href": config.doc_favicon_url,
            },
        )
        head.append(link)
    html.append(head)
    html.append(doc.new_tag("body"))
    doc.append(html)
    return doc


def serialize_document(doc: BeautifulSoup) -> str:
    # XML rules: style and script text is escaped like any other text
    return doc.decode(formatter=XMLFormatter.REGISTRY["minimal"])


def document_to_data_url(doc: BeautifulSoup) -> str:
    return DATA_URL_PREFIX + encode_uri_component(serialize_document(doc))


def data_url_to_document(data_url: str) -> str:
    if not data_url.startswith(DATA_URL_PREFIX):
        raise ValueError("not an exported document data URL")
    return unquote(data_url[len(DATA_URL_PREFIX) :])


# -------------------- Style overrides --------------------


def css_property_name(key: str) -> str:
    if "-" in key:
        return key.lower()
    return CAMEL_RE.sub("-", key).lower()


def set_style(el: Optional[Tag], props: Mapping[str, str]) -> None:
    if el is None or not isinstance(el, Tag) or not props:
        return
    decl = StyleDeclaration.parse(el.get("style"))
    for k, v in props.items():
        decl.set(css_property_name(k), v)
    el["style"] = decl.css_text


def apply_style_overrides(doc: BeautifulSoup, node, overrides: StyleOverrides) -> None:
    if not overrides:
        return
    set_style(doc.find("html"), overrides.html)
    set_style(doc.find("body"), overrides.body)
    set_style(node, overrides.node)
    for selector, props in overrides.selectors.items():
        for el in doc.select(selector):
            set_style(el, props)
