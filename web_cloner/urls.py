import hashlib
import posixpath
import re
from typing import Iterable, List, Optional, Pattern, Sequence
from urllib.parse import quote, unquote, urljoin, urlsplit, urlunsplit

import tldextract

from .errors import ConfigError

INVALID_FILENAME_CHARS_RE = re.compile(r'[<>:"\\|?*]')
HOST_CHARS_RE = re.compile(r"[^a-zA-Z0-9-]")
FILE_EXT_RE = re.compile(r"\.[a-zA-Z0-9]+$")

# characters encodeURI leaves alone in a path
PATH_SAFE = "/:@!$&'()*+,;=-._~"

NON_FETCHABLE_PREFIXES = (
    "#",
    "data:",
    "blob:",
    "javascript:",
    "mailto:",
    "tel:",
    "about:",
)

ASSET_TYPES = {
    ".css": "stylesheet",
    ".js": "script",
    ".mjs": "script",
    ".jpg": "image",
    ".jpeg": "image",
    ".png": "image",
    ".gif": "image",
    ".webp": "image",
    ".svg": "image",
    ".ico": "image",
    ".bmp": "image",
    ".avif": "image",
    ".woff": "font",
    ".woff2": "font",
    ".ttf": "font",
    ".otf": "font",
    ".eot": "font",
    ".mp4": "video",
    ".webm": "video",
    ".ogg": "video",
    ".mp3": "audio",
    ".wav": "audio",
    ".m4a": "audio",
}
BINARY_TYPES = {"image", "font", "video", "audio"}
BINARY_EXTS = {".pdf", ".zip", ".tar", ".gz"}
DEFAULT_PORTS = {"http": 80, "https": 443}

# offline: use the snapshot bundled with tldextract
_TLDX = tldextract.TLDExtract(suffix_list_urls=(), cache_dir=None)


def can_fetch_url(u: Optional[str]) -> bool:
    if not u:
        return False
    u = u.strip()
    if not u:
        return False
    return not u.lower().startswith(NON_FETCHABLE_PREFIXES)


def is_http_url(u: str) -> bool:
    return urlsplit(u).scheme in ("http", "https")


def sanitize_filename(name: str) -> str:
    name = INVALID_FILENAME_CHARS_RE.sub("_", name)
    if name == "..":
        return "_"
    return name[:200]


# -------------------- Identity --------------------


def normalize_url(url: str) -> str:
    """Canonical visitation key: no fragment, path decoded and re-encoded."""
    try:
        p = urlsplit(url.strip())
    except ValueError:
        return url
    if not p.scheme or not p.netloc:
        return url
    path = quote(unquote(p.path), safe=PATH_SAFE) or "/"
    return urlunsplit((p.scheme.lower(), p.netloc.lower(), path, p.query, ""))


def _origin(url: str):
    p = urlsplit(url)
    scheme = p.scheme.lower()
    return scheme, p.hostname, p.port or DEFAULT_PORTS.get(scheme)


def is_same_origin(a: str, b: str) -> bool:
    try:
        return _origin(a) == _origin(b)
    except ValueError:
        return False


def registrable_domain(host: str) -> str:
    ext = _TLDX(host)
    if not ext.suffix:
        return host
    return ".".join(p for p in (ext.domain, ext.suffix) if p)


def is_same_site(a: str, b: str) -> bool:
    ha = urlsplit(a).hostname or ""
    hb = urlsplit(b).hostname or ""
    return registrable_domain(ha) == registrable_domain(hb)


def resolve_url(ref: str, base_url: str) -> str:
    """Join ``ref`` onto ``base_url``.

    A base whose last path segment has no extension is treated as a directory,
    so ``style.css`` on ``/path/page`` becomes ``/path/page/style.css``.
    Returns an empty string when the result is not an http(s) URL.
    """
    try:
        p = urlsplit(base_url)
        path = p.path
        if path and not path.endswith("/"):
            last = path.rsplit("/", 1)[-1]
            if not FILE_EXT_RE.search(last):
                base_url = urlunsplit(p._replace(path=path + "/"))
        joined = urljoin(base_url, ref.strip())
    except ValueError:
        return ""
    return joined if is_http_url(joined) else ""


# -------------------- Local layout --------------------


def _short_hash(text: str, n: int = 8) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()[:n]


def url_to_local_path(url: str, base_url: str) -> str:
    """Map a remote URL to a relative, filesystem-safe path in the mirror."""
    try:
        u = urlsplit(url)
        if not u.scheme or not u.hostname:
            raise ValueError(url)
    except ValueError:
        return f"assets/{hashlib.md5(url.encode('utf-8')).hexdigest()}.bin"

    local = unquote(u.path) or "/"
    if local.endswith("/"):
        local += "index.html"
    if u.query:
        head, ext = posixpath.splitext(local)
        local = f"{head}_{_short_hash('?' + u.query)}{ext or '.html'}"
    if not posixpath.splitext(local)[1]:
        local += ".html"

    segs = [sanitize_filename(s) for s in local.split("/") if s and s != "."]
    if not is_same_origin(url, base_url):
        segs = ["external", HOST_CHARS_RE.sub("_", u.hostname)] + segs
    return "/".join(segs)


def relative_path(from_file: str, to_file: str) -> str:
    start = posixpath.dirname(from_file.replace("\\", "/")) or "."
    return posixpath.relpath(to_file.replace("\\", "/"), start)


# -------------------- Classification --------------------


def url_extension(url: str) -> str:
    try:
        return posixpath.splitext(urlsplit(url).path)[1].lower()
    except ValueError:
        return ""


def asset_type_for(url: str) -> str:
    return ASSET_TYPES.get(url_extension(url), "other")


def is_binary_asset(url: str, asset_type: Optional[str] = None) -> bool:
    t = asset_type or asset_type_for(url)
    return t in BINARY_TYPES or url_extension(url) in BINARY_EXTS


# -------------------- Scope patterns --------------------


def compile_patterns(patterns: Iterable[str]) -> List[Pattern[str]]:
    out = []
    for p in patterns:
        try:
            out.append(re.compile(p.replace("*", ".*")))
        except re.error as e:
            raise ConfigError(f"invalid URL pattern {p!r}: {e}") from e
    return out


def matches_pattern(url: str, patterns: Sequence[Pattern[str]]) -> bool:
    return any(p.search(url) for p in patterns)
