"""Computed-style snapshot for documents that were not captured from a browser.

Resolves, per element, the declarations of every matching style rule and the
inline ``style`` attribute by importance, origin, specificity and source order,
then fills inherited properties from the parent element. Rules inside group
at-rules only apply for media that a screen rendering would match.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import soupsieve as sv
import tinycss2
from bs4 import BeautifulSoup, Tag

from .css import StyleDeclaration, absolutize_urls
from .source import SourceDocument
from .stylesheets import Sheet

INHERITED_PROPERTIES = frozenset(
    {
        "color",
        "cursor",
        "direction",
        "font",
        "font-family",
        "font-size",
        "font-style",
        "font-variant",
        "font-weight",
        "letter-spacing",
        "line-height",
        "list-style",
        "list-style-image",
        "list-style-position",
        "list-style-type",
        "quotes",
        "text-align",
        "text-indent",
        "text-transform",
        "visibility",
        "white-space",
        "word-spacing",
    }
)
SCREEN_MEDIA = frozenset({"", "all", "screen", "only screen", "only all"})
GROUP_AT_RULES = frozenset({"supports", "layer", "document"})
PSEUDO_ELEMENT_RE = re.compile(r"::?(before|after)\s*$", re.IGNORECASE)

Specificity = Tuple[int, int, int]


@dataclass
class CompiledRule:
    selector: "sv.SoupSieve"
    pseudo: Optional[str]
    specificity: Specificity
    order: int
    declarations: List[Tuple[str, str, bool]]


def split_selectors(text: str) -> List[str]:
    out: List[str] = []
    depth = 0
    cur: List[str] = []
    for c in text:
        if c in "([":
            depth += 1
        elif c in ")]":
            depth = max(0, depth - 1)
        elif c == "," and depth == 0:
            out.append("".join(cur).strip())
            cur = []
            continue
        cur.append(c)
    out.append("".join(cur).strip())
    return [s for s in out if s]


def specificity(selector: str) -> Specificity:
    s = re.sub(r":where\((?:[^()]|\([^()]*\))*\)", " ", selector, flags=re.IGNORECASE)
    s = re.sub(r":(?:not|is|has)\(", " ", s, flags=re.IGNORECASE)
    s = re.sub(r"(\"[^\"]*\"|'[^']*')", "", s)
    attrs = len(re.findall(r"\[[^\]]*\]", s))
    s = re.sub(r"\[[^\]]*\]", " ", s)
    ids = len(re.findall(r"#[\w-]+", s))
    s = re.sub(r"#[\w-]+", " ", s)
    pseudo_elements = len(re.findall(r"::[\w-]+", s))
    s = re.sub(r"::[\w-]+", " ", s)
    classes = len(re.findall(r"\.[\w-]+", s)) + len(re.findall(r":[\w-]+", s))
    s = re.sub(r"\.[\w-]+|:[\w-]+", " ", s)
    types = len(re.findall(r"(?:^|[\s>+~(])[a-zA-Z][\w-]*", s))
    return ids, attrs + classes, types + pseudo_elements


def media_applies(prelude: str) -> bool:
    queries = [" ".join(q.lower().split()) for q in prelude.split(",")]
    return any(q in SCREEN_MEDIA for q in queries)


def _declarations(content, base: Optional[str]) -> List[Tuple[str, str, bool]]:
    out: List[Tuple[str, str, bool]] = []
    for node in tinycss2.parse_declaration_list(content, skip_comments=True, skip_whitespace=True):
        if node.type != "declaration":
            continue
        value = absolutize_urls(tinycss2.serialize(node.value).strip(), base)
        out.append((node.lower_name, value, node.important))
    return out


class StyleResolver:
    def __init__(self, source: SourceDocument, sheets: Iterable[Sheet]):
        self.source = source
        self._rules: List[CompiledRule] = []
        self._cache: Dict[Tuple[int, Optional[str]], StyleDeclaration] = {}
        for sheet in sheets:
            for rule in sheet.rules:
                if rule.node is not None:
                    self._add(rule.node, rule.base)
        logging.debug("style resolver: %d selectors", len(self._rules))

    def _add(self, node, base: Optional[str]) -> None:
        if node.type == "qualified-rule":
            decls = _declarations(node.content, base)
            if not decls:
                return
            prelude = tinycss2.serialize(node.prelude)
            for sel in split_selectors(prelude):
                self._compile(sel, decls)
        elif node.type == "at-rule" and node.content is not None:
            keyword = node.lower_at_keyword
            prelude = tinycss2.serialize(node.prelude)
            if keyword == "media" and not media_applies(prelude):
                return
            if keyword != "media" and keyword not in GROUP_AT_RULES:
                return
            for child in tinycss2.parse_rule_list(
                node.content, skip_comments=True, skip_whitespace=True
            ):
                self._add(child, base)

    def _compile(self, selector: str, decls: List[Tuple[str, str, bool]]) -> None:
        pseudo = None
        m = PSEUDO_ELEMENT_RE.search(selector)
        target = selector
        if m:
            pseudo = "::" + m.group(1).lower()
            target = selector[: m.start()].strip() or "*"
        try:
            compiled = sv.compile(target)
        except (sv.SelectorSyntaxError, NotImplementedError, ValueError) as e:
            logging.debug("unsupported selector %r: %s", selector, e)
            return
        self._rules.append(
            CompiledRule(compiled, pseudo, specificity(selector), len(self._rules), decls)
        )

    def _parent_style(self, tag: Tag) -> Optional[StyleDeclaration]:
        parent = tag.parent
        if self.source.is_shadow_root(parent):
            parent = parent.parent
        if parent is None or isinstance(parent, BeautifulSoup) or not isinstance(parent, Tag):
            return None
        return self.computed(parent)

    def computed(self, tag: Tag, pseudo: Optional[str] = None) -> StyleDeclaration:
        key = (id(tag), pseudo)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        live = self.source.live_style(tag, pseudo)
        if live is not None:
            self._cache[key] = live
            return live

        entries = []
        for rule in self._rules:
            if rule.pseudo != pseudo or not rule.selector.match(tag):
                continue
            for name, value, important in rule.declarations:
                entries.append(((important, 0, rule.specificity, rule.order), name, value))
        if pseudo is None:
            inline = StyleDeclaration.parse(tag.get("style"))
            for name, value, prio in inline.items():
                value = absolutize_urls(value, self.source.base_url)
                entries.append(((bool(prio), 1, (0, 0, 0), 0), name, value))
        entries.sort(key=lambda e: e[0])

        decl = StyleDeclaration()
        if pseudo is not None and not entries:
            self._cache[key] = decl
            return decl
        parent = self.computed(tag) if pseudo is not None else self._parent_style(tag)
        if parent is not None:
            for name, value, _ in parent.items():
                if name in INHERITED_PROPERTIES:
                    decl.set(name, value)
        for (important, _, _, _), name, value in entries:
            decl.set(name, value, "important" if important else "")
        self._cache[key] = decl
        return decl
