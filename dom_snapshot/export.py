import asyncio
import logging
from typing import List, Optional, Tuple

from bs4 import PageElement

from .cascade import StyleResolver
from .cloner import CloneError, clone_node
from .config import ExportConfig, StyleMode
from .document import apply_style_overrides, create_document, document_to_data_url
from .embedder import ResourceEmbedError, embed_resources
from .fetch import Fetcher, RequestsTransport, SingleFlight, Transport
from .source import SourceDocument
from .stylesheets import collect_styles, load_stylesheets
from .urls import ClassNameGenerator


class ExportSession:
    """Everything one export shares: config, output document, fetch cache."""

    def __init__(
        self,
        source: SourceDocument,
        config: ExportConfig,
        transport: Transport,
        cache: Optional[SingleFlight] = None,
    ):
        self.source = source
        self.config = config
        self.document = create_document(config)
        self.fetcher = Fetcher(transport, config, cache, report=self.report)
        self.class_names = ClassNameGenerator()
        self.styles: Optional[StyleResolver] = None
        self.failures: List[Tuple[str, BaseException]] = []

    def report(self, url: str, exc: BaseException) -> None:
        self.failures.append((url, exc))
        if self.config.on_resource_error is not None:
            self.config.on_resource_error(url, exc)


async def export_node(
    node: Optional[PageElement],
    source: SourceDocument,
    config: Optional[ExportConfig] = None,
    transport: Optional[Transport] = None,
    *,
    cache: Optional[SingleFlight] = None,
) -> str:
    if node is None:
        raise CloneError("provided node is not within a document")
    config = config or ExportConfig()
    own_transport = transport is None
    if transport is None:
        transport = RequestsTransport(options=config.transport)
    try:
        session = ExportSession(source, config, transport, cache)
        sheets = await load_stylesheets(source, session)
        if config.style_mode is StyleMode.COMPUTED:
            session.styles = StyleResolver(source, sheets)

        clone = await clone_node(node, session, is_root=True)
        if clone is None:
            raise CloneError("failed to clone node")
        doc = session.document
        doc.body.append(clone)
        for style in await collect_styles(sheets, session):
            doc.head.append(style)

        try:
            await embed_resources(clone, session)
        except ResourceEmbedError as e:
            logging.warning("%d resource(s) left unembedded: %s", len(e.failures), e)
            reported = {url for url, _ in session.failures}
            for url, _ in e.failures:
                if url not in reported:
                    session.report(url, e)

        apply_style_overrides(doc, clone, config.styles)
        if session.failures:
            logging.info("export finished with %d recovered failure(s)", len(session.failures))
        return document_to_data_url(doc)
    finally:
        if own_transport:
            transport.close()


def export_node_sync(
    node: Optional[PageElement],
    source: SourceDocument,
    config: Optional[ExportConfig] = None,
    transport: Optional[Transport] = None,
) -> str:
    return asyncio.run(export_node(node, source, config, transport))
