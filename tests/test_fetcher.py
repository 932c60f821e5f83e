import asyncio

import httpx
import pytest

from errors import FetchTimeout, HttpStatusError, NetworkError, UnsupportedContentType
from fetcher import Fetcher, sanitize_html

PAGE = """<html><head><style>body {color: red}</style><script>track()</script></head>
<body><noscript>Enable JS</noscript><h1>Open Scholarships</h1><a href="/apply">Apply</a></body></html>"""


def _fetch(handler, url="https://example.org/opportunities", **kwargs):
    fetcher = Fetcher(transport=httpx.MockTransport(handler), **kwargs)
    return asyncio.run(fetcher.fetch_page_content(url))


def _html(status=200, body=PAGE, content_type="text/html; charset=utf-8", headers=None):
    return httpx.Response(status, content=body.encode(), headers={"content-type": content_type, **(headers or {})})


def test_sanitize_html_strips_scripts_styles_and_noscript():
    cleaned = sanitize_html(PAGE)
    assert "track()" not in cleaned
    assert "color: red" not in cleaned
    assert "Enable JS" not in cleaned
    assert "<h1>Open Scholarships</h1>" in cleaned
    assert 'href="/apply"' in cleaned


def test_sanitize_blank_input():
    assert sanitize_html("") == ""
    assert sanitize_html("   \n") == ""


def test_fetch_returns_sanitized_html():
    seen = {}

    def handler(request):
        seen["user_agent"] = request.headers["user-agent"]
        return _html()

    content = _fetch(handler)
    assert "Open Scholarships" in content
    assert "<script>" not in content
    assert seen["user_agent"].startswith("Mozilla/5.0")


def test_fetch_accepts_xhtml():
    assert "Open Scholarships" in _fetch(lambda request: _html(content_type="application/xhtml+xml"))


def test_fetch_follows_redirects():
    def handler(request):
        if request.url.path == "/old":
            return httpx.Response(301, headers={"location": "https://example.org/new"})
        return _html()

    assert "Open Scholarships" in _fetch(handler, url="https://example.org/old")


def test_redirect_loop_is_network_error():
    def handler(request):
        return httpx.Response(302, headers={"location": "https://example.org/loop"})

    with pytest.raises(NetworkError):
        _fetch(handler, url="https://example.org/loop", max_redirects=2)


def test_non_success_status_raises_http_status_error():
    with pytest.raises(HttpStatusError) as excinfo:
        _fetch(lambda request: _html(status=404))
    assert excinfo.value.code == 404
    assert excinfo.value.status_code == 502


def test_non_html_response_is_rejected():
    with pytest.raises(UnsupportedContentType) as excinfo:
        _fetch(lambda request: _html(body='{"ok": true}', content_type="application/json"))
    assert excinfo.value.content_type == "application/json"


def test_timeout_raises_fetch_timeout():
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(FetchTimeout) as excinfo:
        _fetch(handler, timeout=3)
    assert "timed out after 3s" in str(excinfo.value)


def test_connection_failure_raises_network_error():
    def handler(request):
        raise httpx.ConnectError("name resolution failed", request=request)

    with pytest.raises(NetworkError) as excinfo:
        _fetch(handler)
    assert "name resolution failed" in excinfo.value.reason
