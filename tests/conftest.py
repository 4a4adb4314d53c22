from typing import Dict, List, Optional, Tuple, Union
from urllib.parse import urlsplit

import pytest
import requests
from requests.cookies import RequestsCookieJar

from web_cloner.cookies import CookieJar
from web_cloner.fetch import Fetcher
from web_cloner.settings import JobConfig

CHALLENGE_HTML = (
    "<html><head><title>Just a moment...</title></head>"
    '<body><script src="/cdn-cgi/challenge-platform/h/b/orchestrate/chl_page/v1"></script>'
    "</body></html>"
)


def make_response(
    url: str,
    body: Union[str, bytes] = b"",
    status: int = 200,
    content_type: str = "text/html; charset=utf-8",
    cookies: Optional[Dict[str, str]] = None,
) -> requests.Response:
    r = requests.Response()
    r.url = url
    r.status_code = status
    r._content = body.encode("utf-8") if isinstance(body, str) else body
    r.headers["Content-Type"] = content_type
    r.encoding = "utf-8" if isinstance(body, str) else None
    host = urlsplit(url).hostname
    for name, value in (cookies or {}).items():
        r.cookies.set(name, value, domain=host, path="/")
    return r


class FakeSession:
    """Serves canned responses keyed by exact URL; unknown URLs get a 404."""

    def __init__(self, routes: Optional[Dict[str, object]] = None):
        self.routes: Dict[str, object] = dict(routes or {})
        self.requested: List[Tuple[str, Dict[str, str]]] = []
        self.cookies = RequestsCookieJar()
        self.closed = False

    def get(self, url, headers=None, timeout=None, **kwargs):
        self.requested.append((url, dict(headers or {})))
        route = self.routes.get(url)
        if route is None:
            return make_response(url, "not found", 404)
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(url)
        return route

    def close(self):
        self.closed = True

    def urls(self) -> List[str]:
        return [u for u, _ in self.requested]


class FakeRenderer:
    def __init__(self, html: str = "<html><body>rendered</body></html>", **kwargs):
        self.html = html
        self.kwargs = kwargs
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.closed = False

    def render(self, url: str, referer: Optional[str] = None) -> str:
        self.calls.append((url, referer))
        return self.html

    def close(self) -> None:
        self.closed = True


class RendererFactory:
    """Stands in for the browser renderer class and remembers what it built."""

    def __init__(self, html: str = "<html><body>rendered</body></html>"):
        self.html = html
        self.created: List[FakeRenderer] = []

    def __call__(self, **kwargs) -> FakeRenderer:
        r = FakeRenderer(self.html, **kwargs)
        self.created.append(r)
        return r


@pytest.fixture
def job(tmp_path) -> JobConfig:
    return JobConfig(
        target_url="https://example.test",
        output_dir=str(tmp_path / "out"),
        max_depth=0,
        delay_ms=0,
        user_agent="test-agent/1.0",
    )


@pytest.fixture
def renderer_factory() -> RendererFactory:
    return RendererFactory()


@pytest.fixture
def make_fetcher(renderer_factory):
    def _make(config: JobConfig, routes: Dict[str, object], jar: Optional[CookieJar] = None):
        session = FakeSession(routes)
        fetcher = Fetcher(
            config, jar, session=session, renderer_factory=renderer_factory
        )
        return fetcher, session

    return _make
