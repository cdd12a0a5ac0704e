import pytest
from bs4 import BeautifulSoup

from dom_snapshot import cli
from dom_snapshot.config import StyleMode
from dom_snapshot.document import DATA_URL_PREFIX

from .conftest import PNG_BYTES, FakeTransport

PAGE_HTML = (
    "<html><head><title>t</title></head><body>"
    '<main><h1>Hello</h1><img src="/a.png"><aside class="ad">x</aside></main>'
    "</body></html>"
)


@pytest.fixture
def fake_network(monkeypatch):
    transport = FakeTransport({"https://example.com/a.png": PNG_BYTES})
    monkeypatch.setattr(cli, "fetch_page_html", lambda session, url, timeout: PAGE_HTML)
    monkeypatch.setattr(cli, "RequestsTransport", lambda session, options: transport)
    return transport


def test_parse_args_defaults():
    args = cli.parse_args(["https://example.com/", "out.xhtml"])
    config = cli.config_from_args(args)
    assert config.style_mode is StyleMode.COMPUTED
    assert config.filter is None
    assert config.transport.timeout == 15.0
    assert config.max_import_depth == 5


def test_config_file_supplies_defaults(tmp_path):
    pytest.importorskip("tomllib")
    cfg = tmp_path / "snap.toml"
    cfg.write_text(
        '[export]\nstyle-mode = "declared"\ntitle = "From config"\n'
        "[transport]\ntimeout = 3.5\n"
    )
    args = cli.parse_args(["--config", str(cfg), "https://example.com/", "o", "--title", "CLI"])
    config = cli.config_from_args(args)
    assert config.style_mode is StyleMode.DECLARED
    assert config.transport.timeout == 3.5
    assert config.doc_title == "CLI"


def test_main_writes_document(tmp_path, fake_network, capsys):
    out = tmp_path / "snap" / "page.xhtml"
    cli.main(
        ["https://example.com/", str(out), "--selector", "main", "--exclude", ".ad", "--title", "Snap"]
    )
    doc = BeautifulSoup(out.read_text(encoding="utf-8"), "html.parser")
    assert doc.title.string == "Snap"
    assert doc.body.main.h1.get_text() == "Hello"
    assert doc.body.main.img["src"].startswith("data:image/png;base64,")
    assert doc.find("aside") is None
    assert "Saved to:" in capsys.readouterr().out


def test_main_can_write_data_url(tmp_path, fake_network):
    out = tmp_path / "page.txt"
    cli.main(["https://example.com/", str(out), "--data-url"])
    assert out.read_text(encoding="utf-8").startswith(DATA_URL_PREFIX)


def test_main_rejects_non_http_urls(tmp_path):
    with pytest.raises(SystemExit):
        cli.main(["ftp://example.com/", str(tmp_path / "o")])


def test_main_fails_when_selector_matches_nothing(tmp_path, fake_network):
    with pytest.raises(SystemExit):
        cli.main(["https://example.com/", str(tmp_path / "o"), "--selector", "#missing"])
