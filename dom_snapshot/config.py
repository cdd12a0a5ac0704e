import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import soupsieve as sv
from bs4 import Tag

# -------------------- Config --------------------

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.7",
}

DEFAULT_MAX_IMPORT_DEPTH = 5


class StyleMode(str, Enum):
    COMPUTED = "computed"
    DECLARED = "declared"


StyleMap = Dict[str, str]


@dataclass
class StyleOverrides:
    html: StyleMap = field(default_factory=dict)
    body: StyleMap = field(default_factory=dict)
    node: StyleMap = field(default_factory=dict)
    selectors: Dict[str, StyleMap] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.html or self.body or self.node or self.selectors)


@dataclass
class TransportOptions:
    timeout: float = 15.0
    retries: int = 0
    verify: bool = True
    headers: Dict[str, str] = field(default_factory=dict)

    # Auth / session
    cookies_file: Optional[str] = None
    extra_headers: List[str] = field(default_factory=list)  # "Name: value"
    auth_basic: Optional[str] = None  # "user:pass"
    auth_bearer: Optional[str] = None


@dataclass
class ExportConfig:
    # Document
    doc_title: Optional[str] = None
    doc_favicon_url: Optional[str] = None

    # Cloning
    style_mode: StyleMode = StyleMode.COMPUTED
    filter: Optional[Callable[[Any], bool]] = None
    styles: StyleOverrides = field(default_factory=StyleOverrides)

    # Fetching
    cache_bust: bool = False
    include_query_params: bool = False
    image_placeholder: Optional[str] = None  # data URL
    transport: TransportOptions = field(default_factory=TransportOptions)
    max_import_depth: int = DEFAULT_MAX_IMPORT_DEPTH

    # Diagnostics: called with (url, exception) for every recovered failure
    on_resource_error: Optional[Callable[[str, BaseException], None]] = None


def selector_filter(selectors: Iterable[str]) -> Optional[Callable[[Any], bool]]:
    compiled = [sv.compile(s) for s in selectors if s]
    if not compiled:
        return None

    def keep(node: Any) -> bool:
        if not isinstance(node, Tag):
            return True
        return not any(c.match(node) for c in compiled)

    return keep


# -------------------- Config loader --------------------


def load_config_file(path: str) -> Dict[str, Union[str, int, float, bool, List[str]]]:
    p = Path(path)
    suf = p.suffix.lower()
    if suf in {".toml", ".tml"}:
        try:
            import tomllib  # py311+
        except ImportError:
            try:
                import tomli as tomllib  # backport
            except ImportError:
                raise RuntimeError("TOML config requires Python 3.11+ or 'tomli'")
        with open(p, "rb") as f:
            return tomllib.load(f) or {}
    elif suf in {".yaml", ".yml"}:
        try:
            import yaml
        except ImportError:
            raise RuntimeError("YAML config requires 'PyYAML'")
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise RuntimeError("Top-level YAML must be a mapping")
            return data
    else:
        raise RuntimeError("Unsupported config format. Use .toml or .yaml")


def flatten_config(cfg: Dict[str, Any], groups: Iterable[str]) -> Dict[str, Any]:
    flat = {k: v for k, v in cfg.items() if not isinstance(v, dict)}
    for g in groups:
        section = cfg.get(g)
        if isinstance(section, dict):
            flat.update(section)
        elif section is not None:
            logging.warning("config section [%s] is not a table, ignored", g)
    return {k.replace("-", "_"): v for k, v in flat.items()}
