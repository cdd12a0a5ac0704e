import mimetypes
import random
import re
from typing import Optional
from urllib.parse import quote, urljoin, urlparse

ABSOLUTE_URL_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)
PROTOCOL_RELATIVE_RE = re.compile(r"^//")
OTHER_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*:", re.IGNORECASE)
EXTENSION_RE = re.compile(r"\.([^./?#]+)(?:[?#].*)?$")

WOFF = "application/font-woff"
JPEG = "image/jpeg"
MIME_BY_EXT = {
    "woff": WOFF,
    "woff2": "application/font-woff2",
    "ttf": "application/font-truetype",
    "eot": "application/vnd.ms-fontobject",
    "png": "image/png",
    "jpg": JPEG,
    "jpeg": JPEG,
    "gif": "image/gif",
    "tiff": "image/tiff",
    "svg": "image/svg+xml",
    "webp": "image/webp",
    "avif": "image/avif",
    "ico": "image/x-icon",
    "css": "text/css",
}

# encodeURIComponent leaves these unescaped
URI_COMPONENT_SAFE = "-_.!~*'()"


def is_data_url(u: str) -> bool:
    return u.startswith("data:")


def make_data_url(encoded: str, mime_type: str) -> str:
    return f"data:{mime_type};base64,{encoded}"


def data_url_content(data_url: str) -> str:
    _, _, content = data_url.partition(",")
    return content


def get_extension(url: str) -> str:
    m = EXTENSION_RE.search(url)
    return m.group(1) if m else ""


def get_mime_type(url: str) -> str:
    if is_data_url(url):
        m = re.match(r"^data:([^;,]+)[;,]", url)
        return m.group(1) if m else ""
    ext = get_extension(url).lower()
    if not ext:
        return ""
    mime = MIME_BY_EXT.get(ext)
    if mime:
        return mime
    return mimetypes.types_map.get("." + ext, "")


def strip_content_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ""
    return content_type.split(";")[0].strip().lower()


def resolve_url(url: str, base: Optional[str]) -> str:
    if ABSOLUTE_URL_RE.match(url):
        return url
    if PROTOCOL_RELATIVE_RE.match(url):
        scheme = urlparse(base).scheme if base else ""
        return f"{scheme or 'https'}:{url}"
    # data:, mailto:, blob: and friends
    if OTHER_SCHEME_RE.match(url):
        return url
    if not base:
        return url
    return urljoin(base, url)


def cache_key(url: str, *, include_query: bool = False) -> str:
    if include_query:
        return url
    return url.split("?", 1)[0]


def can_fetch_url(u: Optional[str]) -> bool:
    if not u:
        return False
    u = u.strip()
    if u.startswith(("#", "mailto:", "tel:", "javascript:", "data:", "blob:", "about:")):
        return False
    return True


def encode_uri_component(text: str) -> str:
    return quote(text, safe=URI_COMPONENT_SAFE)


class ClassNameGenerator:
    """Short unique class names for generated pseudo-element rules."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        self._counter = 0

    def _random_part(self) -> str:
        n = self._rng.randrange(36**4)
        digits = "0123456789abcdefghijklmnopqrstuvwxyz"
        out = ""
        for _ in range(4):
            n, r = divmod(n, 36)
            out = digits[r] + out
        return out

    def __call__(self) -> str:
        self._counter += 1
        return f"u{self._random_part()}{self._counter}"
