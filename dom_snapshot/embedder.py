import asyncio
import base64
import binascii
from typing import TYPE_CHECKING, Iterable, List, Optional, Tuple

from bs4 import PageElement, Tag

from .css import StyleDeclaration, payload_mime, rewrite_css
from .urls import is_data_url, make_data_url, resolve_url

if TYPE_CHECKING:
    from .export import ExportSession

BACKGROUND_PROPERTIES = ("background", "background-image")


class ResourceEmbedError(Exception):
    def __init__(self, failures: Iterable[Tuple[str, str]]):
        self.failures: List[Tuple[str, str]] = list(failures)
        super().__init__("; ".join(f"{u} ({reason})" for u, reason in self.failures))

    @classmethod
    def merge(cls, errors: Iterable["ResourceEmbedError"]) -> "ResourceEmbedError":
        return cls(f for e in errors for f in e.failures)


def _decodes(encoded: str) -> bool:
    try:
        return len(base64.b64decode(encoded, validate=True)) > 0
    except (binascii.Error, ValueError):
        return False


async def _embed_background(node: Tag, session: "ExportSession") -> None:
    if not node.get("style"):
        return
    style = StyleDeclaration.parse(node["style"])
    changed = False
    for prop in BACKGROUND_PROPERTIES:
        value = style.get(prop)
        if not value:
            continue
        new_value = await rewrite_css(value, session.source.base_url, session.fetcher)
        if new_value != value:
            style.set(prop, new_value, style.priority(prop))
            changed = True
    if changed:
        node["style"] = style.css_text


def _media_attr(node: Tag) -> Optional[str]:
    if node.name == "img":
        return "src"
    if node.name == "image":
        return "href" if node.has_attr("href") else "xlink:href"
    return None


async def _embed_media(node: Tag, session: "ExportSession") -> None:
    attr = _media_attr(node)
    if attr is None:
        return
    src = (node.get(attr) or "").strip()
    if not src or is_data_url(src):
        return
    url = resolve_url(src, session.source.base_url)
    payload = await session.fetcher.fetch(url)
    if not _decodes(payload.encoded):
        raise ResourceEmbedError([(url, "no decodable payload")])
    mime = payload_mime(url, payload, session.config.image_placeholder)
    data_url = make_data_url(payload.encoded, mime)
    if node.has_attr("srcset"):
        del node["srcset"]
    node[attr] = data_url


async def _embed_children(node: Tag, session: "ExportSession") -> List[ResourceEmbedError]:
    children = [c for c in node.children if isinstance(c, Tag)]
    if not children:
        return []
    results = await asyncio.gather(
        *(embed_resources(c, session) for c in children), return_exceptions=True
    )
    failures: List[ResourceEmbedError] = []
    for r in results:
        if isinstance(r, ResourceEmbedError):
            failures.append(r)
        elif isinstance(r, BaseException):
            raise r
    return failures


async def embed_resources(node: PageElement, session: "ExportSession") -> PageElement:
    if not isinstance(node, Tag):
        return node
    await _embed_background(node, session)
    failures: List[ResourceEmbedError] = []
    try:
        await _embed_media(node, session)
    except ResourceEmbedError as e:
        failures.append(e)
    failures.extend(await _embed_children(node, session))
    if failures:
        raise failures[0] if len(failures) == 1 else ResourceEmbedError.merge(failures)
    return node
