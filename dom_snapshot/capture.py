import logging
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

import requests

from .source import REF_ATTR, LiveElementState

# Tags every element (shadow trees included) with REF_ATTR and returns the
# per-ref state plus a serialization that keeps open shadow roots as
# declarative <template shadowrootmode> children.
_CAPTURE_JS = """
(refAttr) => {
  const state = {};
  const roots = [];
  let counter = 0;

  const styleOf = (el, pseudo) => {
    const s = window.getComputedStyle(el, pseudo);
    const out = {};
    for (let i = 0; i < s.length; i++) {
      const name = s.item(i);
      out[name] = s.getPropertyValue(name);
    }
    return out;
  };

  const visit = (root) => {
    for (const el of Array.from(root.querySelectorAll("*"))) {
      const ref = String(++counter);
      el.setAttribute(refAttr, ref);
      const entry = { style: styleOf(el, null) };
      for (const [pseudo, key] of [["::before", "before"], ["::after", "after"]]) {
        const content = window.getComputedStyle(el, pseudo).getPropertyValue("content");
        if (content && content !== "none") entry[key] = styleOf(el, pseudo);
      }
      if (
        el instanceof HTMLInputElement ||
        el instanceof HTMLTextAreaElement ||
        el instanceof HTMLSelectElement
      ) {
        entry.value = el.value;
      }
      if (el instanceof HTMLCanvasElement) {
        try { entry.bitmap = el.toDataURL(); } catch (_) {}
      }
      state[ref] = entry;
      if (el.shadowRoot) {
        roots.push(el.shadowRoot);
        visit(el.shadowRoot);
      }
    }
  };
  visit(document);

  const html = document.documentElement;
  const open = html.outerHTML.slice(0, html.outerHTML.indexOf(">") + 1);
  const inner = typeof html.getHTML === "function"
    ? html.getHTML({ serializableShadowRoots: true, shadowRoots: roots })
    : html.innerHTML;
  return { html: "<!DOCTYPE html>" + open + inner + "</html>", state };
}
"""


def fetch_page_html(
    session: requests.Session, url: str, timeout: float
) -> Optional[str]:
    r = session.get(url, timeout=timeout)
    if r.status_code >= 400:
        logging.error("failed %s -> HTTP %s", url, r.status_code)
        return None
    ct = (r.headers.get("Content-Type") or "").lower()
    if "text/html" not in ct and "application/xhtml+xml" not in ct:
        logging.error("not an HTML page: %s (%s)", url, ct or "no content type")
        return None
    if not r.encoding:
        r.encoding = r.apparent_encoding or "utf-8"
    return r.text


def _cookies_for_url(session: requests.Session, url: str) -> List[dict]:
    out = []
    u = urlparse(url)
    host = u.hostname or ""
    path = u.path or "/"
    secure = u.scheme == "https"
    for c in session.cookies:
        dom = (c.domain or "").lstrip(".")
        host_ok = (host == dom) or (dom and host.endswith("." + dom))
        path_ok = path.startswith(c.path or "/")
        sec_ok = (not c.secure) or secure
        if host_ok and path_ok and sec_ok:
            out.append(
                {
                    "name": c.name,
                    "value": c.value,
                    "domain": c.domain or host,
                    "path": c.path or "/",
                    "secure": bool(c.secure),
                    "httpOnly": False,
                }
            )
    return out


def _live_state(raw: Dict[str, dict]) -> Dict[str, LiveElementState]:
    return {
        ref: LiveElementState(
            style=entry.get("style"),
            before=entry.get("before"),
            after=entry.get("after"),
            value=entry.get("value"),
            bitmap=entry.get("bitmap"),
        )
        for ref, entry in raw.items()
    }


def capture_live_page(
    url: str,
    session: Optional[requests.Session] = None,
    wait_until: str = "networkidle",
    timeout_ms: int = 10000,
) -> Tuple[Optional[str], Dict[str, LiveElementState]]:
    try:
        from playwright.sync_api import sync_playwright
    except ImportError:
        logging.error(
            "Playwright not installed. Run: pip install playwright && playwright install"
        )
        return None, {}

    with sync_playwright() as pl:
        browser = pl.chromium.launch(headless=True)
        try:
            ua = None
            locale = None
            if session is not None:
                ua = session.headers.get("User-Agent")
                locale = (session.headers.get("Accept-Language") or "en-US").split(",")[0]
            context = browser.new_context(user_agent=ua, locale=locale)
            if session is not None:
                cookies = _cookies_for_url(session, url)
                if cookies:
                    context.add_cookies(cookies)
                context.set_extra_http_headers(dict(session.headers))
            page = context.new_page()
            page.goto(url, wait_until=wait_until, timeout=timeout_ms)
            result = page.evaluate(_CAPTURE_JS, REF_ATTR)
            context.close()
        except Exception as e:
            logging.warning("Playwright capture failed for %s: %s", url, e)
            return None, {}
        finally:
            browser.close()
    state = _live_state(result.get("state") or {})
    logging.info("captured %d live elements from %s", len(state), url)
    return result.get("html"), state
