import asyncio
from typing import Dict, List, Optional, Tuple, Union

from dom_snapshot.config import ExportConfig
from dom_snapshot.export import ExportSession
from dom_snapshot.fetch import FetchError, Transport, TransportResponse
from dom_snapshot.source import SourceDocument

PNG_BYTES = b"\x89PNG\r\n\x1a\n fake png"
BASE = "https://example.com/page/index.html"

Response = Union[bytes, str, Tuple[bytes, str]]


class FakeTransport(Transport):
    """In-memory transport. Lookup ignores the query string; calls keep it."""

    def __init__(self, responses: Optional[Dict[str, Response]] = None):
        self.responses: Dict[str, Response] = dict(responses or {})
        self.calls: List[str] = []
        self.closed = False

    async def fetch(self, url: str) -> TransportResponse:
        self.calls.append(url)
        await asyncio.sleep(0)
        key = url if url in self.responses else url.split("?", 1)[0]
        if key not in self.responses:
            raise FetchError(url, "HTTP 404")
        body = self.responses[key]
        if isinstance(body, tuple):
            return TransportResponse(body[0], body[1])
        if isinstance(body, str):
            return TransportResponse(body.encode("utf-8"), "text/css; charset=utf-8")
        return TransportResponse(body, "application/octet-stream")

    def close(self) -> None:
        self.closed = True


def make_session(
    html: str,
    config: Optional[ExportConfig] = None,
    transport: Optional[FakeTransport] = None,
    url: str = BASE,
    live=None,
) -> ExportSession:
    source = SourceDocument.from_html(html, url, live)
    return ExportSession(source, config or ExportConfig(), transport or FakeTransport())


def run(coro):
    return asyncio.run(coro)
