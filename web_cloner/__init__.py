"""Mirror websites for offline viewing."""

from .capture import CapturedRequest, parse_captured_request
from .challenge import requires_browser
from .cloner import AssetRecord, CloneStats, FrontierEntry, WebsiteCloner, clone_site
from .cookies import Cookie, CookieJar
from .errors import (
    CaptureParseError,
    ConfigError,
    FetchError,
    RenderError,
    WebClonerError,
)
from .fetch import Fetcher
from .parser import ExtractedAssets, extract_assets, rewrite_css, rewrite_html
from .proxies import ProxyStore
from .settings import JobConfig, ProxyConfig, load_config_file
from .urls import normalize_url, resolve_url, url_to_local_path

__version__ = "0.1.0"

__all__ = [
    "AssetRecord",
    "CaptureParseError",
    "CapturedRequest",
    "CloneStats",
    "ConfigError",
    "Cookie",
    "CookieJar",
    "ExtractedAssets",
    "FetchError",
    "Fetcher",
    "FrontierEntry",
    "JobConfig",
    "ProxyConfig",
    "ProxyStore",
    "RenderError",
    "WebClonerError",
    "WebsiteCloner",
    "clone_site",
    "extract_assets",
    "load_config_file",
    "normalize_url",
    "parse_captured_request",
    "requires_browser",
    "resolve_url",
    "rewrite_css",
    "rewrite_html",
    "url_to_local_path",
]
