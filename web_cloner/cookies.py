import logging
from dataclasses import dataclass
from threading import Lock
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

import requests

logger = logging.getLogger(__name__)

SAME_SITE_VALUES = {"Strict", "Lax", "None"}


@dataclass
class Cookie:
    name: str
    value: str
    domain: Optional[str] = None
    path: Optional[str] = None
    expires: Optional[float] = None
    http_only: Optional[bool] = None
    secure: Optional[bool] = None
    same_site: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Cookie":
        """Build from a config/JSON mapping (camelCase or snake_case keys)."""
        same_site = data.get("sameSite", data.get("same_site"))
        return cls(
            name=str(data["name"]),
            value=str(data.get("value", "")),
            domain=data.get("domain") or None,
            path=data.get("path") or None,
            expires=data.get("expires"),
            http_only=data.get("httpOnly", data.get("http_only")),
            secure=data.get("secure"),
            same_site=same_site if same_site in SAME_SITE_VALUES else None,
        )

    @classmethod
    def from_playwright(cls, data: Mapping[str, Any]) -> "Cookie":
        expires = data.get("expires")
        # -1 marks a session cookie
        if expires is not None and expires < 0:
            expires = None
        same_site = data.get("sameSite")
        return cls(
            name=data["name"],
            value=data.get("value", ""),
            domain=data.get("domain") or None,
            path=data.get("path") or None,
            expires=expires,
            http_only=data.get("httpOnly"),
            secure=data.get("secure"),
            same_site=same_site if same_site in SAME_SITE_VALUES else None,
        )

    def to_playwright(self, url: str) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "value": self.value,
            "domain": self.domain or (urlsplit(url).hostname or ""),
            "path": self.path or "/",
        }
        if self.expires is not None:
            out["expires"] = float(self.expires)
        if self.http_only is not None:
            out["httpOnly"] = self.http_only
        if self.secure is not None:
            out["secure"] = self.secure
        if self.same_site is not None:
            out["sameSite"] = self.same_site
        return out


def _clean_domain(domain: Optional[str]) -> str:
    return (domain or "").lstrip(".").lower()


def domain_matches(host: str, domain: str) -> bool:
    if not domain:
        return True
    host = host.lower()
    return host == domain or host.endswith("." + domain) or domain.endswith("." + host)


class CookieJar:
    """Run-scoped cookie store shared by the HTTP and browser fetch paths.

    Keyed by ``(domain, name)``; the last writer wins. All mutation goes
    through one lock so merges from either path are never lost.
    """

    def __init__(self, seed: Iterable[Cookie] = ()):
        self._cookies: Dict[Tuple[str, str], Cookie] = {}
        self._lock = Lock()
        for c in seed:
            self.set(c)

    def set(self, cookie: Cookie) -> None:
        key = (_clean_domain(cookie.domain), cookie.name)
        with self._lock:
            self._cookies[key] = cookie

    def get(self, name: str, domain: str = "") -> Optional[str]:
        with self._lock:
            c = self._cookies.get((_clean_domain(domain), name))
        return None if c is None else c.value

    def __len__(self) -> int:
        with self._lock:
            return len(self._cookies)

    def __iter__(self) -> Iterator[Cookie]:
        with self._lock:
            return iter(list(self._cookies.values()))

    def for_url(self, url: str) -> List[Cookie]:
        host = urlsplit(url).hostname or ""
        return [c for c in self if domain_matches(host, _clean_domain(c.domain))]

    def header_for(self, url: str) -> str:
        return "; ".join(f"{c.name}={c.value}" for c in self.for_url(url))

    def update_from_response(self, url: str, response: requests.Response) -> int:
        host = urlsplit(url).hostname or ""
        n = 0
        for r in list(response.history) + [response]:
            for c in r.cookies:
                self.set(
                    Cookie(
                        name=c.name,
                        value=c.value or "",
                        domain=_clean_domain(c.domain) or host,
                        path=c.path or None,
                        expires=c.expires,
                        secure=bool(c.secure),
                    )
                )
                n += 1
        if n:
            logger.debug("stored %d cookie(s) from %s", n, url)
        return n

    def merge_browser_cookies(self, cookies: Iterable[Mapping[str, Any]]) -> int:
        n = 0
        for data in cookies:
            self.set(Cookie.from_playwright(data))
            n += 1
        return n

    def to_playwright(self, url: str) -> List[Dict[str, Any]]:
        return [c.to_playwright(url) for c in self.for_url(url)]
