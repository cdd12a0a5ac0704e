import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from .capture import capture_live_page, fetch_page_html
from .config import (
    DEFAULT_MAX_IMPORT_DEPTH,
    ExportConfig,
    StyleMode,
    TransportOptions,
    flatten_config,
    load_config_file,
    selector_filter,
)
from .document import data_url_to_document
from .export import export_node
from .fetch import RequestsTransport, apply_auth_to_session, build_session
from .source import SourceDocument

CONFIG_SECTIONS = ("general", "export", "transport", "auth")


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Snapshot a page element into one self-contained XHTML document.",
        add_help=True,
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)

    p.add_argument("url", help="http(s) URL")
    p.add_argument("output", help="output file")
    p.add_argument(
        "--selector", type=str, default=None, help="CSS selector of the node (default: body)"
    )
    p.add_argument(
        "--data-url",
        action="store_true",
        help="write the data: URL instead of the decoded document",
    )
    p.add_argument("--verbose", action="store_true", help="debug logging")

    # export
    p.add_argument(
        "--style-mode",
        choices=[m.value for m in StyleMode],
        default=StyleMode.COMPUTED.value,
        help="snapshot computed styles or keep declared rules",
    )
    p.add_argument(
        "--exclude",
        action="append",
        default=[],
        help="CSS selector of elements to leave out (repeatable)",
    )
    p.add_argument("--title", type=str, default=None, help="document title")
    p.add_argument("--favicon", type=str, default=None, help="favicon URL or data URL")
    p.add_argument(
        "--cache-bust", action="store_true", help="append a timestamp to resource requests"
    )
    p.add_argument(
        "--include-query-params",
        action="store_true",
        help="treat URLs differing only by query string as distinct resources",
    )
    p.add_argument(
        "--placeholder",
        type=str,
        default=None,
        help="data URL used when a resource cannot be fetched",
    )
    p.add_argument(
        "--max-import-depth",
        type=int,
        default=DEFAULT_MAX_IMPORT_DEPTH,
        help="how deep @import chains are followed",
    )

    # render
    p.add_argument(
        "--render-js",
        action="store_true",
        help="capture the live page with Playwright if installed",
    )
    p.add_argument(
        "--render-timeout-ms", type=int, default=10000, help="Playwright timeout ms"
    )
    p.add_argument(
        "--wait-until", type=str, default="networkidle", help="Playwright wait_until"
    )

    # transport
    p.add_argument(
        "--timeout", type=float, default=15.0, help="request timeout seconds"
    )
    p.add_argument("--retries", type=int, default=0, help="transport-level retries")
    p.add_argument(
        "--insecure", action="store_true", help="do not verify TLS certificates"
    )

    # auth / session
    p.add_argument(
        "--cookies",
        type=str,
        default=None,
        help="cookies.txt (Netscape/Mozilla format)",
    )
    p.add_argument(
        "--header",
        action="append",
        default=[],
        help="extra request header 'Name: value'",
    )
    p.add_argument("--auth-basic", type=str, default=None, help="basic auth user:pass")
    p.add_argument("--auth-bearer", type=str, default=None, help="bearer token")

    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        cfg = load_config_file(preliminary.config)
        if isinstance(cfg, dict):
            parser.set_defaults(**flatten_config(cfg, CONFIG_SECTIONS))
    args = parser.parse_args(argv)
    return args


def config_from_args(args: argparse.Namespace) -> ExportConfig:
    transport = TransportOptions(
        timeout=args.timeout,
        retries=max(0, args.retries),
        verify=not args.insecure,
        cookies_file=args.cookies,
        extra_headers=args.header or [],
        auth_basic=args.auth_basic,
        auth_bearer=args.auth_bearer,
    )
    return ExportConfig(
        doc_title=args.title,
        doc_favicon_url=args.favicon,
        style_mode=StyleMode(args.style_mode),
        filter=selector_filter(args.exclude or []),
        cache_bust=args.cache_bust,
        include_query_params=args.include_query_params,
        image_placeholder=args.placeholder,
        transport=transport,
        max_import_depth=max(0, args.max_import_depth),
    )


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    if urlparse(args.url).scheme not in {"http", "https"}:
        print("Invalid URL. Use http:// or https://")
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    config = config_from_args(args)
    session = build_session(retries=config.transport.retries)
    apply_auth_to_session(session, config.transport)
    transport = RequestsTransport(session, config.transport)
    try:
        live = {}
        if args.render_js:
            html, live = capture_live_page(
                args.url, session, args.wait_until, args.render_timeout_ms
            )
        else:
            logging.info("GET %s", args.url)
            html = fetch_page_html(session, args.url, config.transport.timeout)
        if html is None:
            print(f"Critical error: failed to fetch HTML for {args.url}")
            sys.exit(1)

        source = SourceDocument.from_html(html, args.url, live)
        node = source.select_one(args.selector) if args.selector else source.body
        if node is None:
            print(f"No element matches {args.selector!r}")
            sys.exit(1)

        data_url = asyncio.run(export_node(node, source, config, transport))
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        if args.data_url:
            out.write_text(data_url, encoding="utf-8")
        else:
            out.write_text(data_url_to_document(data_url), encoding="utf-8")
        print("Snapshot complete")
        print(f"Saved to: {out}")
    finally:
        session.close()


if __name__ == "__main__":
    main()
