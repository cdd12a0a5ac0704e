import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Deque, Dict, FrozenSet, List, Optional, Tuple

import tinycss2
from bs4 import Tag

from .config import StyleMode
from .css import import_urls, rewrite_css, scan_references
from .fetch import FetchError
from .source import SourceDocument
from .urls import can_fetch_url, resolve_url

if TYPE_CHECKING:
    from .export import ExportSession


@dataclass(frozen=True)
class SheetRule:
    text: str
    base: Optional[str]
    kind: str  # "style" for qualified rules, else the at-keyword
    node: Any = field(default=None, compare=False, repr=False)


@dataclass
class Sheet:
    origin: str  # "link" | "style"
    href: Optional[str]
    rules: List[SheetRule] = field(default_factory=list)
    readable: bool = True


def parse_rules(text: str, base: Optional[str]) -> List[SheetRule]:
    rules: List[SheetRule] = []
    for node in tinycss2.parse_stylesheet(text, skip_comments=True, skip_whitespace=True):
        if node.type == "error":
            logging.debug("css parse error in %s: %s", base or "inline style", node.message)
            continue
        kind = node.lower_at_keyword if node.type == "at-rule" else "style"
        rules.append(SheetRule(node.serialize(), base, kind, node))
    return rules


def _flatten(
    text: str,
    base: Optional[str],
    fetched: Dict[str, Optional[str]],
    chain: FrozenSet[str],
) -> List[SheetRule]:
    out: List[SheetRule] = []
    for rule in parse_rules(text, base):
        if rule.kind == "charset":
            continue
        if rule.kind != "import":
            out.append(rule)
            continue
        targets = import_urls(rule.text, base)
        if not targets:
            continue
        target = targets[0]
        if target in chain:
            logging.warning("@import cycle at %s, skipped", target)
            continue
        imported = fetched.get(target)
        if imported is None:
            continue
        out.extend(_flatten(imported, target, fetched, chain | {target}))
    return out


async def _read_sheet(url: str, session: "ExportSession") -> Optional[str]:
    try:
        return await session.fetcher.fetch_text(url)
    except FetchError as e:
        logging.warning("failed to load stylesheet %s: %s", url, e)
        session.report(url, e)
        return None


def _style_roots(source: SourceDocument) -> List[Tuple[str, Optional[str], Optional[str]]]:
    roots: List[Tuple[str, Optional[str], Optional[str]]] = []
    for tag in source.soup.find_all(["link", "style"]):
        if source.in_shadow_tree(tag):
            continue
        if tag.name == "style":
            roots.append(("style", None, tag.get_text()))
            continue
        rels = tag.get("rel") or []
        if isinstance(rels, str):
            rels = rels.split()
        rels = {r.lower() for r in rels}
        href = tag.get("href")
        if "stylesheet" not in rels or "alternate" in rels or not can_fetch_url(href):
            continue
        roots.append(("link", resolve_url(href.strip(), source.base_url), None))
    return roots


async def load_stylesheets(source: SourceDocument, session: "ExportSession") -> List[Sheet]:
    roots = _style_roots(source)
    max_depth = session.config.max_import_depth

    # breadth-first over @import chains; each url is fetched at most once
    fetched: Dict[str, Optional[str]] = {}
    pending: Deque[Tuple[str, int]] = deque()
    for origin, href, text in roots:
        if origin == "link":
            pending.append((href, 0))
        else:
            for u in import_urls(text or "", source.base_url):
                pending.append((u, 1))
    while pending:
        batch: List[Tuple[str, int]] = []
        while pending:
            url, depth = pending.popleft()
            if url in fetched:
                continue
            if depth > max_depth:
                logging.warning("@import depth limit (%d) reached at %s", max_depth, url)
                continue
            fetched[url] = None
            batch.append((url, depth))
        texts = await asyncio.gather(*(_read_sheet(u, session) for u, _ in batch))
        for (url, depth), text in zip(batch, texts):
            fetched[url] = text
            if not text:
                continue
            for u in import_urls(text, url):
                if u not in fetched:
                    pending.append((u, depth + 1))

    sheets: List[Sheet] = []
    for origin, href, text in roots:
        if origin == "link":
            text = fetched.get(href)
            if text is None:
                sheets.append(Sheet(origin, href, readable=False))
                continue
            rules = _flatten(text, href, fetched, frozenset({href}))
        else:
            rules = _flatten(text or "", source.base_url, fetched, frozenset())
        sheets.append(Sheet(origin, href, rules))
    logging.debug(
        "loaded %d stylesheets (%d via @import)",
        len(sheets),
        len([u for u in fetched if fetched[u] is not None]),
    )
    return sheets


def _has_url(text: str) -> bool:
    return any(not r.is_import for r in scan_references(text))


async def _rewrite_rules(rules: List[SheetRule], session: "ExportSession") -> str:
    texts = await asyncio.gather(*(rewrite_css(r.text, r.base, session.fetcher) for r in rules))
    return "\n".join(texts)


def _style_node(session: "ExportSession", text: str) -> Tag:
    node = session.document.new_tag("style")
    node.string = text
    return node


async def collect_styles(sheets: List[Sheet], session: "ExportSession") -> List[Tag]:
    nodes: List[Tag] = []
    for sheet in sheets:
        if sheet.origin != "link" or not sheet.readable:
            continue
        nodes.append(_style_node(session, await _rewrite_rules(sheet.rules, session)))

    inline_rules = [r for s in sheets if s.origin == "style" for r in s.rules]
    fonts = [r for r in inline_rules if r.kind == "font-face" and _has_url(r.text)]
    if fonts:
        nodes.append(_style_node(session, await _rewrite_rules(fonts, session)))

    if session.config.style_mode is StyleMode.DECLARED:
        other = [r for r in inline_rules if r.kind != "font-face"]
        if other:
            nodes.append(_style_node(session, await _rewrite_rules(other, session)))
    return nodes
