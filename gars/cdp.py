"""Chrome DevTools Protocol helpers: list tabs, evaluate scripts, scan pages."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx
import websockets

__all__ = [
    "BrowserConfig",
    "TabInfo",
    "JsResult",
    "list_tabs",
    "execute_js",
    "scan_page",
    "trim_url",
    "visible_text_script",
    "simplified_html_script",
]

_EVALUATE_TIMEOUT_MS = 30_000
_TAB_URL_LIMIT = 90
_MISSING = object()


@dataclass(frozen=True)
class BrowserConfig:
    host: str = "127.0.0.1"
    port: int = 9222

    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None or isinstance(value, str):
        return value
    raise ValueError(f"tab field {key!r} must be a string")


@dataclass
class TabInfo:
    id: str
    title: str | None = None
    url: str | None = None
    kind: str | None = None
    web_socket_debugger_url: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> TabInfo:
        """Build from one entry of the ``/json`` endpoint."""
        if not isinstance(data, dict) or not isinstance(data.get("id"), str):
            raise ValueError("tab entry must be an object with a string id")
        return cls(
            id=data["id"],
            title=_optional_str(data, "title"),
            url=_optional_str(data, "url"),
            kind=_optional_str(data, "type"),
            web_socket_debugger_url=_optional_str(data, "webSocketDebuggerUrl"),
        )


@dataclass
class JsResult:
    status: str
    js_return: Any
    raw: Any


async def list_tabs(config: BrowserConfig) -> list[TabInfo]:
    """Return the browser's page tabs (entries without a type count as pages)."""
    url = f"{config.base_url()}/json"
    async with httpx.AsyncClient(timeout=None, trust_env=False) as client:
        try:
            response = await client.get(url)
        except httpx.TransportError as err:
            raise ConnectionError(f"connect to Chrome CDP endpoint {url}: {err}") from err
    response.raise_for_status()
    data = response.json()
    if not isinstance(data, list):
        raise ValueError("CDP /json endpoint did not return a list")
    tabs = [TabInfo.from_dict(item) for item in data]
    return [tab for tab in tabs if (tab.kind or "page") == "page"]


def _pointer(value: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(value, dict) or key not in value:
            return _MISSING
        value = value[key]
    return value


async def execute_js(config: BrowserConfig, tab_id: str | None, script: str) -> JsResult:
    """Evaluate ``script`` in the tab ``tab_id`` (or the first tab) and return its value."""
    tabs = await list_tabs(config)
    if tab_id is not None:
        tab = next((t for t in tabs if t.id == tab_id), None)
    else:
        tab = tabs[0] if tabs else None
    if tab is None:
        raise LookupError(
            f"No Chrome tab found. Start Chrome with --remote-debugging-port={config.port}"
        )
    if tab.web_socket_debugger_url is None:
        raise ValueError("Tab has no webSocketDebuggerUrl")
    request = {
        "id": 1,
        "method": "Runtime.evaluate",
        "params": {
            "expression": script,
            "awaitPromise": True,
            "returnByValue": True,
            "timeout": _EVALUATE_TIMEOUT_MS,
        },
    }
    async with websockets.connect(tab.web_socket_debugger_url, max_size=None) as ws:
        await ws.send(json.dumps(request))
        async for message in ws:
            if isinstance(message, bytes):
                message = message.decode("utf-8", errors="replace")
            value = json.loads(message)
            if not isinstance(value, dict):
                continue
            reply_id = value.get("id")
            if not (isinstance(reply_id, int) and not isinstance(reply_id, bool) and reply_id == 1):
                continue
            if "error" in value:
                return JsResult(status="error", js_return=value["error"], raw=value)
            result = _pointer(value, "result", "result", "value")
            if result is _MISSING:
                result = _pointer(value, "result", "result", "description")
            if result is _MISSING:
                result = None
            return JsResult(status="success", js_return=result, raw=value)
    raise ConnectionError("CDP websocket closed before Runtime.evaluate returned")


async def scan_page(
    config: BrowserConfig, tab_id: str | None, text_only: bool, max_len: int
) -> dict[str, Any]:
    """Extract visible text or simplified HTML from a tab, with tab metadata."""
    tabs = await list_tabs(config)
    tab_list = [
        {
            "id": tab.id,
            "title": tab.title,
            "url": trim_url(tab.url, _TAB_URL_LIMIT) if tab.url is not None else None,
        }
        for tab in tabs
    ]
    script = visible_text_script(max_len) if text_only else simplified_html_script(max_len)
    result = await execute_js(config, tab_id, script)
    return {
        "status": result.status,
        "metadata": {
            "tabs_count": len(tab_list),
            "tabs": tab_list,
            "active_tab": tab_id,
        },
        "content": result.js_return,
    }


def trim_url(url: str, max_len: int) -> str:
    """Cut ``url`` to ``max_len`` characters, marking the cut with ``...``."""
    if len(url) <= max_len:
        return url
    return url[:max_len] + "..."


_VISIBLE_TEXT_TEMPLATE = r"""(function() {
  const walker = document.createTreeWalker(document.body || document.documentElement, NodeFilter.SHOW_TEXT);
  const chunks = [];
  let node;
  while ((node = walker.nextNode())) {
    const text = (node.nodeValue || '').replace(/\s+/g, ' ').trim();
    if (!text) continue;
    const parent = node.parentElement;
    if (!parent) continue;
    const style = getComputedStyle(parent);
    if (style.display === 'none' || style.visibility === 'hidden' || Number(style.opacity) === 0) continue;
    chunks.push(text);
    if (chunks.join('\n').length > @MAX_LEN@) break;
  }
  return chunks.join('\n').slice(0, @MAX_LEN@);
})()"""

_SIMPLIFIED_HTML_TEMPLATE = r"""(function() {
  function visible(el) {
    const style = getComputedStyle(el);
    if (style.display === 'none' || style.visibility === 'hidden' || Number(style.opacity) === 0) return false;
    const r = el.getBoundingClientRect();
    return r.width > 0 && r.height > 0;
  }
  const keep = ['A','BUTTON','INPUT','TEXTAREA','SELECT','OPTION','LABEL','H1','H2','H3','P','LI','TD','TH','ARTICLE','MAIN','SECTION'];
  const out = [];
  document.querySelectorAll(keep.join(',')).forEach((el, idx) => {
    if (!visible(el)) return;
    const tag = el.tagName.toLowerCase();
    const text = (el.innerText || el.value || el.getAttribute('aria-label') || '').replace(/\s+/g, ' ').trim();
    if (!text && !['input','textarea','select'].includes(tag)) return;
    const id = el.id ? ` id="${el.id}"` : '';
    const href = tag === 'a' && el.href ? ` href="${el.href}"` : '';
    out.push(`<${tag} data-gars-idx="${idx}"${id}${href}>${text.slice(0, 500)}</${tag}>`);
  });
  return out.join('\n').slice(0, @MAX_LEN@);
})()"""


def visible_text_script(max_len: int) -> str:
    """Script returning the page's visible text, at most ``max_len`` characters."""
    return _VISIBLE_TEXT_TEMPLATE.replace("@MAX_LEN@", str(int(max_len)))


def simplified_html_script(max_len: int) -> str:
    """Script returning visible interactive elements as compact HTML."""
    return _SIMPLIFIED_HTML_TEMPLATE.replace("@MAX_LEN@", str(int(max_len)))