from .cloner import CloneError
from .config import ExportConfig, StyleMode, StyleOverrides, TransportOptions
from .embedder import ResourceEmbedError
from .export import ExportSession, export_node, export_node_sync
from .fetch import FetchError, RequestsTransport, SingleFlight, Transport, TransportResponse
from .source import LiveElementState, NodeKind, SourceDocument

__all__ = [
    "CloneError",
    "ExportConfig",
    "ExportSession",
    "FetchError",
    "LiveElementState",
    "NodeKind",
    "RequestsTransport",
    "ResourceEmbedError",
    "SingleFlight",
    "SourceDocument",
    "StyleMode",
    "StyleOverrides",
    "Transport",
    "TransportOptions",
    "TransportResponse",
    "export_node",
    "export_node_sync",
]
