import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from http.cookiejar import MozillaCookieJar
from typing import Any, Awaitable, Callable, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import DEFAULT_HEADERS, ExportConfig, TransportOptions
from .urls import cache_key, data_url_content, strip_content_type


class FetchError(Exception):
    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


@dataclass(frozen=True)
class Payload:
    encoded: str
    content_type: str
    failed: bool = False

    @classmethod
    def placeholder(cls, placeholder_url: Optional[str]) -> "Payload":
        encoded = data_url_content(placeholder_url) if placeholder_url else ""
        return cls(encoded=encoded, content_type="", failed=True)


@dataclass(frozen=True)
class TransportResponse:
    content: bytes
    content_type: str


class Transport:
    async def fetch(self, url: str) -> TransportResponse:
        raise NotImplementedError

    def close(self) -> None:
        pass


# -------------------- HTTP session --------------------


def build_session(
    headers: Optional[Dict[str, str]] = None, retries: int = 0
) -> requests.Session:
    s = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods={"GET", "HEAD"},
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=32, pool_maxsize=32)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update(DEFAULT_HEADERS if headers is None else headers)
    return s


def apply_auth_to_session(session: requests.Session, options: TransportOptions) -> None:
    session.headers.update(options.headers)
    for h in options.extra_headers:
        if ":" not in h:
            logging.warning("invalid header (no colon): %s", h)
            continue
        k, v = h.split(":", 1)
        session.headers[k.strip()] = v.strip()
    if options.auth_bearer:
        session.headers["Authorization"] = f"Bearer {options.auth_bearer}"
    if options.auth_basic:
        if ":" not in options.auth_basic:
            logging.error("--auth-basic requires user:pass")
        else:
            u, p = options.auth_basic.split(":", 1)
            session.auth = (u, p)
    if options.cookies_file:
        try:
            jar = MozillaCookieJar()
            jar.load(options.cookies_file, ignore_discard=True, ignore_expires=True)
            session.cookies.update(jar)
            logging.info("loaded cookies: %s", options.cookies_file)
        except OSError as e:
            logging.error("failed to load cookies: %s", e)


class RequestsTransport(Transport):
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        options: Optional[TransportOptions] = None,
    ):
        self.options = options or TransportOptions()
        self._owns_session = session is None
        if session is None:
            session = build_session(retries=self.options.retries)
            apply_auth_to_session(session, self.options)
        self.session = session

    def _get(self, url: str) -> TransportResponse:
        if not url.startswith(("http://", "https://")):
            raise FetchError(url, "unsupported scheme")
        r = self.session.get(url, timeout=self.options.timeout, verify=self.options.verify)
        if r.status_code >= 400:
            raise FetchError(url, f"HTTP {r.status_code}")
        return TransportResponse(r.content, r.headers.get("Content-Type") or "")

    async def fetch(self, url: str) -> TransportResponse:
        return await asyncio.to_thread(self._get, url)

    def close(self) -> None:
        if self._owns_session:
            self.session.close()


# -------------------- Single-flight cache --------------------


class SingleFlight:
    """Shares one in-flight future per key among concurrent callers.

    Entries are created before the first await, so there is no window in
    which two callers can both miss and both start a request.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, "asyncio.Future"] = {}
        self._seeded: Dict[str, Any] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._entries or key in self._seeded

    def __len__(self) -> int:
        return len(self._entries) + len(self._seeded)

    def seed(self, key: str, value: Any) -> None:
        self._seeded[key] = value

    async def get(self, key: str, factory: Callable[[], Awaitable]) -> Any:
        if key in self._seeded:
            return self._seeded[key]
        fut = self._entries.get(key)
        if fut is None:
            fut = asyncio.ensure_future(factory())
            self._entries[key] = fut
        return await fut


# -------------------- Fetcher --------------------


def cache_busted(url: str) -> str:
    token = str(int(time.time() * 1000))
    return url + ("&" if "?" in url else "?") + token


class Fetcher:
    def __init__(
        self,
        transport: Transport,
        config: ExportConfig,
        cache: Optional[SingleFlight] = None,
        report: Optional[Callable[[str, BaseException], None]] = None,
    ):
        self.transport = transport
        self.config = config
        self.cache = cache if cache is not None else SingleFlight()
        self.text_cache = SingleFlight()
        self._report = report

    def _request_url(self, url: str) -> str:
        return cache_busted(url) if self.config.cache_bust else url

    async def fetch(self, url: str) -> Payload:
        key = cache_key(url, include_query=self.config.include_query_params)
        return await self.cache.get(key, lambda: self._load(url))

    async def _load(self, url: str) -> Payload:
        try:
            resp = await self.transport.fetch(self._request_url(url))
        except Exception as e:
            logging.warning("failed %s -> %s", url, e)
            if self._report is not None:
                self._report(url, e)
            return Payload.placeholder(self.config.image_placeholder)
        encoded = base64.b64encode(resp.content).decode("ascii")
        logging.debug("fetched %s (%d bytes)", url, len(resp.content))
        return Payload(encoded=encoded, content_type=strip_content_type(resp.content_type))

    async def fetch_text(self, url: str) -> str:
        return await self.text_cache.get(url, lambda: self._load_text(url))

    async def _load_text(self, url: str) -> str:
        try:
            resp = await self.transport.fetch(self._request_url(url))
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(url, str(e) or type(e).__name__) from e
        charset = "utf-8"
        for param in resp.content_type.split(";")[1:]:
            k, _, v = param.strip().partition("=")
            if k.lower() == "charset" and v:
                charset = v.strip("\"'")
        try:
            return resp.content.decode(charset, errors="replace")
        except LookupError:
            return resp.content.decode("utf-8", errors="replace")
