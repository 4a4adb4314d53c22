import logging
import random
from pathlib import Path
from typing import Callable, Dict, Optional
from urllib.parse import urlsplit

import requests
from bs4.dammit import EncodingDetector
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .challenge import requires_browser
from .cookies import CookieJar
from .errors import FetchError
from .render import BrowserRenderer
from .settings import JobConfig, ProxyConfig
from .urls import is_same_origin, is_same_site

logger = logging.getLogger(__name__)

# -------------------- Config --------------------

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15",
]

BASE_HEADERS = {
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Cache-Control": "max-age=0",
}

DOCUMENT_ACCEPT = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,"
    "image/webp,image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7"
)

# asset type (as recorded) -> request resource type
RESOURCE_TYPES = {
    "document": "document",
    "stylesheet": "stylesheet",
    "script": "script",
    "image": "image",
    "font": "font",
    "video": "media",
    "audio": "media",
    "other": "other",
}

RendererFactory = Callable[..., BrowserRenderer]


def build_session(
    user_agent: str,
    headers: Optional[Dict[str, str]] = None,
    proxy: Optional[ProxyConfig] = None,
) -> requests.Session:
    s = requests.Session()
    # no automatic retries: every URL is requested at most once
    retry = Retry(total=0, raise_on_status=False)
    adapter = HTTPAdapter(max_retries=retry, pool_connections=16, pool_maxsize=16)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update(BASE_HEADERS)
    s.headers["User-Agent"] = user_agent
    s.headers.update(headers or {})
    if proxy is not None:
        s.proxies = {"http": proxy.url(), "https": proxy.url()}
    return s


def map_resource_type(asset_type: Optional[str], is_binary: bool) -> str:
    if not asset_type:
        return "image" if is_binary else "document"
    return RESOURCE_TYPES.get(asset_type, "image" if is_binary else "document")


def fetch_site(url: str, referer: Optional[str]) -> str:
    if not referer:
        return "none"
    if is_same_origin(url, referer):
        return "same-origin"
    if is_same_site(url, referer):
        return "same-site"
    return "cross-site"


def resource_headers(
    url: str, referer: Optional[str] = None, resource_type: str = "document"
) -> Dict[str, str]:
    """Headers a browser would send when loading ``url`` as ``resource_type``."""
    headers: Dict[str, str] = {"Sec-Fetch-Site": fetch_site(url, referer)}
    if referer:
        headers["Referer"] = referer
    if resource_type == "document":
        headers["Accept"] = DOCUMENT_ACCEPT
        headers["Sec-Fetch-Dest"] = "document"
        headers["Sec-Fetch-Mode"] = "navigate"
        headers["Sec-Fetch-User"] = "?1"
        headers["Upgrade-Insecure-Requests"] = "1"
    elif resource_type == "stylesheet":
        headers["Accept"] = "text/css,*/*;q=0.1"
        headers["Sec-Fetch-Dest"] = "style"
        headers["Sec-Fetch-Mode"] = "no-cors"
    elif resource_type == "script":
        headers["Accept"] = "*/*"
        headers["Sec-Fetch-Dest"] = "script"
        headers["Sec-Fetch-Mode"] = "no-cors"
    elif resource_type == "image":
        headers["Accept"] = "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8"
        headers["Sec-Fetch-Dest"] = "image"
        headers["Sec-Fetch-Mode"] = "no-cors"
    elif resource_type == "font":
        headers["Accept"] = "*/*"
        headers["Sec-Fetch-Dest"] = "font"
        headers["Sec-Fetch-Mode"] = "cors"
        if referer:
            r = urlsplit(referer)
            headers["Origin"] = f"{r.scheme}://{r.netloc}"
    elif resource_type == "media":
        headers["Accept"] = "*/*"
        headers["Sec-Fetch-Dest"] = "video"
        headers["Sec-Fetch-Mode"] = "no-cors"
        headers["Range"] = "bytes=0-"
    else:
        headers["Accept"] = "*/*"
        headers["Sec-Fetch-Dest"] = "empty"
        headers["Sec-Fetch-Mode"] = "cors"
    return headers


def decode_body(r: requests.Response, resource_type: str) -> str:
    """Text of ``r``: the Content-Type charset, else a document's own declaration, else utf-8."""
    content_type = r.headers.get("Content-Type", "")
    if "charset=" in content_type.lower() and r.encoding:
        return r.text
    if resource_type == "document":
        declared = EncodingDetector.find_declared_encoding(r.content, is_html=True)
        if declared:
            try:
                return r.content.decode(declared, errors="replace")
            except LookupError:
                logger.debug("unknown declared charset %s: %s", declared, r.url)
    return r.content.decode("utf-8", errors="replace")


# -------------------- Fetcher --------------------


class Fetcher:
    """Direct HTTP fetches that escalate to a shared browser on challenge pages."""

    def __init__(
        self,
        config: JobConfig,
        jar: Optional[CookieJar] = None,
        *,
        session: Optional[requests.Session] = None,
        renderer_factory: Optional[RendererFactory] = None,
    ):
        self.config = config
        self.user_agent = config.user_agent or random.choice(USER_AGENTS)
        self.headers = dict(config.headers)
        self.proxy = config.proxy
        self.timeout = config.timeout
        self.jar = jar if jar is not None else CookieJar(config.cookies)
        self.session = session or build_session(self.user_agent, self.headers, self.proxy)
        self._renderer_factory = renderer_factory or BrowserRenderer
        self._renderer: Optional[BrowserRenderer] = None

    def _get(
        self, url: str, referer: Optional[str], resource_type: str
    ) -> requests.Response:
        headers = resource_headers(url, referer, resource_type)
        cookie = self.jar.header_for(url)
        if cookie:
            headers["Cookie"] = cookie
        try:
            r = self.session.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(url, str(e)) from e
        self.jar.update_from_response(url, r)
        # the jar is the only cookie store
        self.session.cookies.clear()
        if r.status_code >= 500:
            raise FetchError(url, f"HTTP {r.status_code}", r.status_code)
        return r

    def fetch_text(
        self,
        url: str,
        referer: Optional[str] = None,
        resource_type: str = "document",
    ) -> str:
        r = self._get(url, referer, resource_type)
        if r.status_code >= 400:
            if resource_type != "document":
                raise FetchError(url, f"HTTP {r.status_code}", r.status_code)
            logger.warning("HTTP %s for %s, keeping body", r.status_code, url)
        text = decode_body(r, resource_type)
        if resource_type == "document" and requires_browser(text):
            logger.info("anti-bot protection detected, using browser mode: %s", url)
            return self.render(url, referer)
        return text

    def render(self, url: str, referer: Optional[str] = None) -> str:
        if self._renderer is None:
            self._renderer = self._renderer_factory(
                user_agent=self.user_agent,
                jar=self.jar,
                headers=self.headers,
                proxy=self.proxy,
                timeout_ms=self.config.render_timeout_ms,
                challenge_timeout_ms=self.config.challenge_timeout_ms,
            )
        return self._renderer.render(url, referer)

    def fetch_binary(
        self,
        url: str,
        referer: Optional[str] = None,
        resource_type: str = "image",
    ) -> bytes:
        r = self._get(url, referer, resource_type)
        if r.status_code >= 400:
            raise FetchError(url, f"HTTP {r.status_code}", r.status_code)
        return r.content

    def fetch_and_save(
        self,
        url: str,
        output_path: Path,
        is_binary: bool = False,
        referer: Optional[str] = None,
        resource_type: Optional[str] = None,
    ) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        rtype = map_resource_type(resource_type, is_binary)
        if is_binary:
            output_path.write_bytes(self.fetch_binary(url, referer, rtype))
        else:
            output_path.write_text(self.fetch_text(url, referer, rtype), encoding="utf-8")

    def close(self) -> None:
        try:
            if self._renderer is not None:
                self._renderer.close()
                self._renderer = None
        finally:
            self.session.close()
