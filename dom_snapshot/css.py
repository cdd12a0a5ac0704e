import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

import tinycss2

from .fetch import Fetcher, Payload
from .urls import get_mime_type, is_data_url, make_data_url, resolve_url

HEX_DIGITS = "0123456789abcdefABCDEF"
WS = " \t\n\r\f"
IDENT_CHARS_RE = re.compile(r"[A-Za-z0-9_\-]")


# -------------------- Tokenizer --------------------


@dataclass(frozen=True)
class CssReference:
    start: int
    end: int
    url: str
    quote: str = ""
    is_import: bool = False


def _unescape(raw: str) -> str:
    if "\\" not in raw:
        return raw
    out: List[str] = []
    i, n = 0, len(raw)
    while i < n:
        c = raw[i]
        if c != "\\" or i + 1 >= n:
            out.append(c)
            i += 1
            continue
        j = i + 1
        while j < n and j - i <= 6 and raw[j] in HEX_DIGITS:
            j += 1
        if j > i + 1:
            code = int(raw[i + 1 : j], 16)
            out.append(chr(code) if 0 < code <= 0x10FFFF else "�")
            if j < n and raw[j] in WS:
                j += 1
            i = j
        elif raw[i + 1] == "\n":
            i += 2
        else:
            out.append(raw[i + 1])
            i += 2
    return "".join(out)


def _read_string(text: str, i: int) -> Tuple[Optional[str], int]:
    # i points at the opening quote; returns (raw body, index after closing quote)
    q = text[i]
    j = i + 1
    n = len(text)
    while j < n:
        c = text[j]
        if c == "\\":
            j += 2
            continue
        if c == q:
            return text[i + 1 : j], j + 1
        if c == "\n":
            return None, j
        j += 1
    return None, n


def _skip_ws(text: str, i: int) -> int:
    while i < len(text) and text[i] in WS:
        i += 1
    return i


def _read_url(text: str, i: int) -> Tuple[Optional[Tuple[str, str]], int]:
    # i points just past "url("
    n = len(text)
    i = _skip_ws(text, i)
    if i < n and text[i] in "\"'":
        q = text[i]
        body, j = _read_string(text, i)
        if body is None:
            return None, j
        j = _skip_ws(text, j)
        if j < n and text[j] == ")":
            return (_unescape(body), q), j + 1
        return None, j
    j = i
    while j < n:
        c = text[j]
        if c == "\\":
            j += 2
            continue
        if c == ")":
            return (_unescape(text[i:j].rstrip(WS)), ""), j + 1
        if c in "\"'(" or (c in WS and text[_skip_ws(text, j) : _skip_ws(text, j) + 1] != ")"):
            return None, j
        j += 1
    return None, n


def scan_references(text: str) -> Iterator[CssReference]:
    """Yield every url(...) and @import target in CSS text, in source order."""
    i, n = 0, len(text)
    in_import = False
    while i < n:
        c = text[i]
        if c == "/" and text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end < 0 else end + 2
            continue
        if c in "\"'":
            body, j = _read_string(text, i)
            if in_import and body is not None:
                yield CssReference(i, j, _unescape(body), c, True)
                in_import = False
            i = j
            continue
        if c == "\\":
            i += 2
            continue
        if c == "@" and text[i + 1 : i + 7].lower() == "import" and (
            i + 7 >= n or not IDENT_CHARS_RE.match(text[i + 7])
        ):
            in_import = True
            i += 7
            continue
        if c in ";{}":
            in_import = False
            i += 1
            continue
        if (
            c in "uU"
            and text[i : i + 4].lower() == "url("
            and (i == 0 or not IDENT_CHARS_RE.match(text[i - 1]))
        ):
            found, j = _read_url(text, i + 4)
            if found is not None:
                url, q = found
                yield CssReference(i, j, url, q, in_import)
                in_import = False
            i = max(j, i + 4)
            continue
        i += 1


def import_urls(text: str, base: Optional[str]) -> List[str]:
    out: List[str] = []
    for ref in scan_references(text):
        if ref.is_import and ref.url:
            out.append(resolve_url(ref.url, base))
    return out


def _replace_spans(text: str, replacements: List[Tuple[CssReference, str]]) -> str:
    out: List[str] = []
    last = 0
    for ref, new in replacements:
        out.append(text[last : ref.start])
        out.append(new)
        last = ref.end
    out.append(text[last:])
    return "".join(out)


def absolutize_urls(text: str, base: Optional[str]) -> str:
    if not base:
        return text
    repl = []
    for ref in scan_references(text):
        if ref.is_import or not ref.url or is_data_url(ref.url):
            continue
        absu = resolve_url(ref.url, base)
        if absu != ref.url:
            repl.append((ref, f"url({ref.quote}{absu}{ref.quote})"))
    return _replace_spans(text, repl) if repl else text


# -------------------- Declarations --------------------


class StyleDeclaration:
    def __init__(self, items: Optional[Mapping[str, str]] = None):
        self._props: "OrderedDict[str, Tuple[str, str]]" = OrderedDict()
        for k, v in (items or {}).items():
            self.set(k, v)

    @classmethod
    def parse(cls, css_text: Optional[str]) -> "StyleDeclaration":
        decl = cls()
        if not css_text:
            return decl
        for node in tinycss2.parse_declaration_list(
            css_text, skip_comments=True, skip_whitespace=True
        ):
            if node.type != "declaration":
                continue
            value = tinycss2.serialize(node.value).strip()
            decl.set(node.lower_name, value, "important" if node.important else "")
        return decl

    def get(self, name: str) -> str:
        entry = self._props.get(name.lower())
        return entry[0] if entry else ""

    def priority(self, name: str) -> str:
        entry = self._props.get(name.lower())
        return entry[1] if entry else ""

    def set(self, name: str, value: str, priority: str = "") -> None:
        name = name.strip().lower()
        if not name:
            return
        if value is None or value == "":
            self._props.pop(name, None)
            return
        self._props[name] = (str(value), priority)

    def items(self) -> Iterator[Tuple[str, str, str]]:
        for name, (value, prio) in self._props.items():
            yield name, value, prio

    @property
    def css_text(self) -> str:
        parts = []
        for name, (value, prio) in self._props.items():
            parts.append(f"{name}: {value}{' !important' if prio else ''};")
        return " ".join(parts)

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._props

    def __len__(self) -> int:
        return len(self._props)

    def __iter__(self) -> Iterator[str]:
        return iter(self._props)

    def __repr__(self) -> str:
        return f"StyleDeclaration({self.css_text!r})"


# -------------------- Rewriter --------------------


def payload_mime(url: str, payload: Payload, placeholder: Optional[str]) -> str:
    # placeholder bytes keep the placeholder's own type
    if payload.failed and placeholder:
        return get_mime_type(placeholder)
    return get_mime_type(url) or payload.content_type


async def embed_reference(url: str, base: Optional[str], fetcher: Fetcher) -> Optional[str]:
    absu = resolve_url(url, base) if base else url
    payload = await fetcher.fetch(absu)
    if not payload.encoded:
        logging.debug("left unembedded: %s", absu)
        return None
    mime = payload_mime(url, payload, fetcher.config.image_placeholder)
    return make_data_url(payload.encoded, mime)


async def rewrite_css(css_text: str, base: Optional[str], fetcher: Fetcher) -> str:
    refs = [
        r
        for r in scan_references(css_text)
        if not r.is_import and r.url and not is_data_url(r.url)
    ]
    if not refs:
        return css_text
    embedded: Dict[str, Optional[str]] = {}
    # one fetch per distinct url, in order of first appearance
    for ref in refs:
        if ref.url not in embedded:
            embedded[ref.url] = await embed_reference(ref.url, base, fetcher)
    repl = []
    for ref in refs:
        data_url = embedded[ref.url]
        if data_url is not None:
            repl.append((ref, f"url({ref.quote}{data_url}{ref.quote})"))
    return _replace_spans(css_text, repl)
