import asyncio
from typing import TYPE_CHECKING, Callable, Dict, Optional, Tuple

from bs4 import NavigableString, PageElement, Tag

from .config import StyleMode
from .source import EMPTY_BITMAP, REF_ATTR, NodeKind, option_value
from .urls import resolve_url

if TYPE_CHECKING:
    from .export import ExportSession

PSEUDO_ELEMENTS = ("::before", "::after")
# attributes carried over when a video is replaced by its poster image
POSTER_ATTRS = ("id", "class", "style", "width", "height", "title")


class CloneError(Exception):
    pass


def _copy_attrs(node: Tag) -> Dict[str, object]:
    attrs: Dict[str, object] = {}
    for k, v in node.attrs.items():
        if k == REF_ATTR:
            continue
        attrs[k] = list(v) if isinstance(v, list) else v
    return attrs


# -------------------- Shallow clones --------------------

ShallowClone = Tuple[Tag, bool]  # (clone, clone children?)


def _clone_shallow(node: Tag, session: "ExportSession") -> ShallowClone:
    return session.document.new_tag(node.name, attrs=_copy_attrs(node)), True


def _clone_surface(node: Tag, session: "ExportSession") -> ShallowClone:
    url = session.source.bitmap(node)
    if url == EMPTY_BITMAP:
        clone, _ = _clone_shallow(node, session)
        return clone, False
    return session.document.new_tag("img", attrs={"src": url}), False


def _clone_video(node: Tag, session: "ExportSession") -> ShallowClone:
    poster = node.get("poster")
    if not poster:
        return _clone_shallow(node, session)
    attrs = {k: v for k, v in _copy_attrs(node).items() if k in POSTER_ATTRS}
    attrs["src"] = resolve_url(poster.strip(), session.source.base_url)
    return session.document.new_tag("img", attrs=attrs), False


_SHALLOW_CLONERS: Dict[NodeKind, Callable[[Tag, "ExportSession"], ShallowClone]] = {
    NodeKind.MEDIA_SURFACE: _clone_surface,
    NodeKind.VIDEO: _clone_video,
}


# -------------------- Decoration --------------------


def _copy_computed_style(node: Tag, clone: Tag, session: "ExportSession") -> None:
    style = session.styles.computed(node)
    if not len(style):
        return
    clone["style"] = style.css_text


def _clone_pseudo_elements(node: Tag, clone: Tag, session: "ExportSession") -> None:
    for pseudo in PSEUDO_ELEMENTS:
        style = session.styles.computed(node, pseudo)
        content = style.get("content")
        if not content or content == "none":
            continue
        cls = session.class_names()
        classes = clone.get("class") or []
        if isinstance(classes, str):
            classes = classes.split()
        clone["class"] = list(classes) + [cls]
        rule = session.document.new_tag("style")
        rule.string = f".{cls}{pseudo}{{{style.css_text}}}"
        clone.append(rule)


def _copy_text_area(node: Tag, clone: Tag, session: "ExportSession") -> None:
    clone.string = session.source.current_value(node)


def _copy_text_input(node: Tag, clone: Tag, session: "ExportSession") -> None:
    clone["value"] = session.source.current_value(node)


def _copy_selection(node: Tag, clone: Tag, session: "ExportSession") -> None:
    value = session.source.current_value(node)
    matched = False
    for option in clone.find_all("option"):
        if not matched and option_value(option) == value:
            option["selected"] = "selected"
            matched = True
        elif option.has_attr("selected"):
            del option["selected"]


_FORM_STATE: Dict[NodeKind, Callable[[Tag, Tag, "ExportSession"], None]] = {
    NodeKind.TEXT_AREA: _copy_text_area,
    NodeKind.TEXT_INPUT: _copy_text_input,
    NodeKind.SELECT: _copy_selection,
}


def _decorate(node: Tag, kind: NodeKind, clone: PageElement, session: "ExportSession") -> None:
    if not isinstance(clone, Tag):
        return
    if session.config.style_mode is StyleMode.COMPUTED and session.styles is not None:
        _copy_computed_style(node, clone, session)
        _clone_pseudo_elements(node, clone, session)
    copy_state = _FORM_STATE.get(kind)
    if copy_state is not None:
        copy_state(node, clone, session)


# -------------------- Recursion --------------------


async def _clone_children(
    node: Tag, kind: NodeKind, clone: Tag, session: "ExportSession"
) -> None:
    children = session.source.child_nodes(node, kind)
    if not children:
        return
    clones = await asyncio.gather(*(clone_node(c, session) for c in children))
    for c in clones:
        if c is not None:
            clone.append(c)


async def clone_node(
    node: PageElement, session: "ExportSession", is_root: bool = False
) -> Optional[PageElement]:
    config = session.config
    if not is_root and config.filter is not None and not config.filter(node):
        return None
    kind = session.source.kind(node)
    if kind is NodeKind.TEXT:
        if isinstance(node, NavigableString):
            return type(node)(str(node))
        raise CloneError(f"cannot clone {type(node).__name__}")
    clone, descend = _SHALLOW_CLONERS.get(kind, _clone_shallow)(node, session)
    if descend:
        await _clone_children(node, kind, clone, session)
    _decorate(node, kind, clone, session)
    return clone
