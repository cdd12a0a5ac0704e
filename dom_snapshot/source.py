from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, NavigableString, PageElement, Tag
from bs4.element import PreformattedString

from .css import StyleDeclaration

REF_ATTR = "data-snapshot-ref"
SHADOW_ROOT_ATTRS = ("shadowrootmode", "shadowroot")
EMPTY_BITMAP = "data:,"


class NodeKind(Enum):
    TEXT = "text"
    ELEMENT = "element"
    MEDIA_SURFACE = "media-surface"
    VIDEO = "video"
    TEXT_INPUT = "text-input"
    TEXT_AREA = "text-area"
    SELECT = "select"
    SLOT = "slot"
    SHADOW_HOST = "shadow-host"


_KIND_BY_TAG = {
    "canvas": NodeKind.MEDIA_SURFACE,
    "video": NodeKind.VIDEO,
    "input": NodeKind.TEXT_INPUT,
    "textarea": NodeKind.TEXT_AREA,
    "select": NodeKind.SELECT,
    "slot": NodeKind.SLOT,
}


@dataclass
class LiveElementState:
    """State of one element that its markup does not carry."""

    style: Optional[Dict[str, str]] = None
    before: Optional[Dict[str, str]] = None
    after: Optional[Dict[str, str]] = None
    value: Optional[str] = None
    bitmap: Optional[str] = None


# -------------------- HTML utils --------------------


def bs4_parse(html: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml")
    except Exception:
        return BeautifulSoup(html, "html.parser")


def effective_base_url(soup: BeautifulSoup, fallback: str) -> str:
    tag = soup.find("base", href=True)
    if tag and tag.get("href"):
        return urljoin(fallback, tag["href"])
    return fallback


def option_value(option: Tag) -> str:
    if option.has_attr("value"):
        return option["value"]
    return " ".join(option.get_text().split())


def is_character_data(node: PageElement) -> bool:
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


# -------------------- Source document --------------------


class SourceDocument:
    def __init__(
        self,
        soup: BeautifulSoup,
        url: str = "",
        live: Optional[Mapping[str, LiveElementState]] = None,
    ):
        self.soup = soup
        self.url = url
        self.base_url = effective_base_url(soup, url)
        self.live: Mapping[str, LiveElementState] = live or {}

    @classmethod
    def from_html(
        cls,
        html: str,
        url: str = "",
        live: Optional[Mapping[str, LiveElementState]] = None,
    ) -> "SourceDocument":
        return cls(bs4_parse(html), url, live)

    @property
    def body(self) -> Tag:
        return self.soup.body or self.soup

    def select_one(self, selector: str) -> Optional[Tag]:
        return self.soup.select_one(selector)

    def _state(self, tag: Tag) -> Optional[LiveElementState]:
        ref = tag.get(REF_ATTR)
        return self.live.get(ref) if ref else None

    def kind(self, node: PageElement) -> NodeKind:
        if not isinstance(node, Tag):
            return NodeKind.TEXT
        kind = _KIND_BY_TAG.get(node.name.lower())
        if kind is not None:
            return kind
        if self.shadow_root(node) is not None:
            return NodeKind.SHADOW_HOST
        return NodeKind.ELEMENT

    # -------------------- Shadow DOM --------------------

    @staticmethod
    def is_shadow_root(tag: PageElement) -> bool:
        return (
            isinstance(tag, Tag)
            and tag.name == "template"
            and any(tag.has_attr(a) for a in SHADOW_ROOT_ATTRS)
        )

    def shadow_root(self, host: Tag) -> Optional[Tag]:
        for child in host.children:
            if self.is_shadow_root(child):
                return child
        return None

    def shadow_host(self, node: PageElement) -> Optional[Tag]:
        for parent in node.parents:
            if self.is_shadow_root(parent):
                return parent.parent
        return None

    def in_shadow_tree(self, node: PageElement) -> bool:
        return self.shadow_host(node) is not None

    def assigned_nodes(self, slot: Tag) -> List[PageElement]:
        host = self.shadow_host(slot)
        if host is None:
            return []
        name = slot.get("name") or ""
        out: List[PageElement] = []
        for child in host.children:
            if self.is_shadow_root(child):
                continue
            if isinstance(child, Tag):
                if (child.get("slot") or "") == name:
                    out.append(child)
            elif not name and is_character_data(child) and child.strip():
                out.append(child)
        return out

    def child_nodes(self, node: PageElement, kind: NodeKind) -> List[PageElement]:
        if kind is NodeKind.TEXT:
            return []
        if kind is NodeKind.SLOT:
            assigned = self.assigned_nodes(node)
            if assigned:
                return assigned
        elif kind is NodeKind.SHADOW_HOST:
            root = self.shadow_root(node)
            if root is not None:
                return list(root.children)
        return list(node.children)

    # -------------------- Live state --------------------

    def current_value(self, tag: Tag) -> str:
        state = self._state(tag)
        if state is not None and state.value is not None:
            return state.value
        name = tag.name.lower()
        if name == "textarea":
            return tag.get_text()
        if name == "select":
            options = tag.find_all("option")
            if not options:
                return ""
            chosen = next((o for o in options if o.has_attr("selected")), options[0])
            return option_value(chosen)
        return tag.get("value") or ""

    def bitmap(self, tag: Tag) -> str:
        state = self._state(tag)
        if state is not None and state.bitmap:
            return state.bitmap
        return EMPTY_BITMAP

    def live_style(self, tag: Tag, pseudo: Optional[str] = None) -> Optional[StyleDeclaration]:
        state = self._state(tag)
        if state is None or state.style is None:
            return None
        if pseudo is None:
            return StyleDeclaration(state.style)
        if pseudo == "::before":
            return StyleDeclaration(state.before or {})
        if pseudo == "::after":
            return StyleDeclaration(state.after or {})
        return StyleDeclaration()
