import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from bs4 import BeautifulSoup, FeatureNotFound

from .urls import asset_type_for, can_fetch_url, is_http_url, normalize_url, resolve_url

logger = logging.getLogger(__name__)

CSS_URL_RE = re.compile(r"url\(\s*([\"']?)([^)\"']+)\1\s*\)", re.IGNORECASE)
CSS_IMPORT_RE = re.compile(r"@import\s+([\"'])([^\"']+)\1", re.IGNORECASE)
BASE_TAG_RE = re.compile(r"<base\b[^>]*>(?:\s*</base>)?", re.IGNORECASE)
SRCSET_SPLIT_RE = re.compile(r"\s*,\s*")
WS_RE = re.compile(r"\s+")
NEEDS_QUOTES_RE = re.compile(r"[\s()'\"]")

# rule kinds
URL = "url"
LINK = "link"
SRCSET = "srcset"
STYLE = "style"
SPRITE = "sprite"

BUCKETS = ("stylesheets", "scripts", "images", "fonts", "svg_sprites", "links", "other")

SRI_ATTRS = ("integrity", "crossorigin", "referrerpolicy")


@dataclass(frozen=True)
class Rule:
    selector: str
    attr: str
    bucket: str
    kind: str = URL


# Adding a resource pattern is a table edit.
EXTRACTION_RULES: Tuple[Rule, ...] = (
    Rule("link[rel~=stylesheet][href]", "href", "stylesheets"),
    Rule("link[rel~=preload][as=font][href]", "href", "fonts"),
    Rule("link[rel~=icon][href]", "href", "images"),
    Rule("link[rel~=apple-touch-icon][href]", "href", "images"),
    Rule("script[src]", "src", "scripts"),
    Rule("img[src]", "src", "images"),
    Rule("img[data-src]", "data-src", "images"),
    Rule("img[data-lazy-src]", "data-lazy-src", "images"),
    Rule("img[srcset], source[srcset]", "srcset", "images", SRCSET),
    Rule("img[data-srcset], source[data-srcset]", "data-srcset", "images", SRCSET),
    Rule("video[poster]", "poster", "images"),
    Rule("[style]", "style", "images", STYLE),
    Rule("svg image[href]", "href", "images"),
    Rule("svg image[xlink\\:href]", "xlink:href", "images"),
    Rule("use[href]", "href", "svg_sprites", SPRITE),
    Rule("use[xlink\\:href]", "xlink:href", "svg_sprites", SPRITE),
    Rule("a[href]", "href", "links", LINK),
    Rule("video[src], audio[src], source[src]", "src", "other"),
    Rule("iframe[src]", "src", "other"),
    Rule("object[data]", "data", "other"),
    Rule("embed[src]", "src", "other"),
)


@dataclass
class ExtractedAssets:
    stylesheets: List[str] = field(default_factory=list)
    scripts: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    fonts: List[str] = field(default_factory=list)
    svg_sprites: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    other: List[str] = field(default_factory=list)

    def add(self, bucket: str, url: str) -> None:
        items = getattr(self, bucket)
        if url and url not in items:
            items.append(url)

    def downloadable(self) -> Iterator[Tuple[str, str]]:
        """(url, bucket) for everything except crawlable links."""
        for bucket in BUCKETS:
            if bucket == "links":
                continue
            for u in getattr(self, bucket):
                yield u, bucket


# -------------------- HTML utils --------------------


def bs4_parse(html: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml")
    except FeatureNotFound:
        return BeautifulSoup(html, "html.parser")


def serialize_html(soup: BeautifulSoup) -> str:
    return soup.decode(formatter="html")


def effective_base_url(soup: BeautifulSoup, fallback: str) -> str:
    tag = soup.find("base", href=True)
    if tag is not None and tag.get("href"):
        return resolve_url(tag["href"], fallback) or fallback
    return fallback


def strip_base_tag(html: str) -> str:
    return BASE_TAG_RE.sub("", html)


def parse_srcset(v: str) -> List[str]:
    urls: List[str] = []
    for cand in SRCSET_SPLIT_RE.split((v or "").strip()):
        parts = WS_RE.split(cand.strip()) if cand.strip() else []
        if parts:
            urls.append(parts[0])
    return urls


# -------------------- CSS --------------------


def parse_css_urls(text: str) -> List[str]:
    urls: List[str] = []
    for rx in (CSS_URL_RE, CSS_IMPORT_RE):
        for m in rx.finditer(text or ""):
            u = m.group(2).strip()
            if can_fetch_url(u) and u not in urls:
                urls.append(u)
    return urls


def extract_css_urls(css: str, base_url: str) -> List[str]:
    out: List[str] = []
    for u in parse_css_urls(css):
        absu = resolve_url(u, base_url)
        if absu and absu not in out:
            out.append(absu)
    return out


def _lookup(ref: str, base: str, url_to_local: Mapping[str, str]) -> Optional[str]:
    if not can_fetch_url(ref):
        return None
    absu = resolve_url(ref, base)
    if not absu:
        return None
    return url_to_local.get(normalize_url(absu))


def rewrite_css(css: str, url_to_local: Mapping[str, str], base_url: str) -> str:
    def quoted(q: str, path: str) -> str:
        if not q and NEEDS_QUOTES_RE.search(path):
            q = '"'
        return f"{q}{path}{q}"

    def repl_url(m: re.Match) -> str:
        local = _lookup(m.group(2).strip(), base_url, url_to_local)
        if local is None:
            return m.group(0)
        return f"url({quoted(m.group(1), local)})"

    def repl_import(m: re.Match) -> str:
        local = _lookup(m.group(2).strip(), base_url, url_to_local)
        if local is None:
            return m.group(0)
        return f"@import {quoted(m.group(1), local)}"

    t = CSS_URL_RE.sub(repl_url, css)
    return CSS_IMPORT_RE.sub(repl_import, t)


def _css_bucket(url: str) -> str:
    t = asset_type_for(url)
    if t == "font":
        return "fonts"
    if t == "stylesheet":
        return "stylesheets"
    return "images"


# -------------------- Extraction --------------------


def _rule_urls(rule: Rule, value: str, base: str) -> List[str]:
    if rule.kind == SRCSET:
        refs = [u for u in parse_srcset(value) if can_fetch_url(u)]
    elif rule.kind == STYLE:
        refs = parse_css_urls(value)
    elif rule.kind == SPRITE:
        if ".svg" not in value:
            return []
        refs = [value.split("#", 1)[0]]
        refs = [r for r in refs if can_fetch_url(r)]
    else:
        refs = [value] if can_fetch_url(value) else []
    return [u for u in (resolve_url(r, base) for r in refs) if u]


def extract_assets(html: str, base_url: str) -> ExtractedAssets:
    soup = bs4_parse(html)
    base = effective_base_url(soup, base_url)
    assets = ExtractedAssets()
    for rule in EXTRACTION_RULES:
        for tag in soup.select(rule.selector):
            value = tag.get(rule.attr)
            if not value:
                continue
            for u in _rule_urls(rule, value, base):
                assets.add(_css_bucket(u) if rule.kind == STYLE else rule.bucket, u)
    for style in soup.find_all("style"):
        for u in extract_css_urls(style.get_text(), base):
            assets.add(_css_bucket(u), u)
    return assets


# -------------------- Rewriting --------------------


def _with_fragment(local: str, fragment: str) -> str:
    return f"{local}#{fragment}" if fragment else local


def _rewrite_value(
    rule: Rule, value: str, base: str, url_to_local: Mapping[str, str]
) -> Optional[str]:
    if rule.kind == SRCSET:
        parts = []
        hit = False
        for cand in SRCSET_SPLIT_RE.split(value.strip()):
            comp = WS_RE.split(cand.strip()) if cand.strip() else []
            if not comp:
                continue
            local = _lookup(comp[0], base, url_to_local)
            if local is not None:
                hit = True
                comp[0] = local
            parts.append(" ".join(comp))
        return ", ".join(parts) if hit else None
    if rule.kind == STYLE:
        new = rewrite_css(value, url_to_local, base)
        return new if new != value else None
    if rule.kind == SPRITE:
        if ".svg" not in value:
            return None
        file_part, _, fragment = value.partition("#")
        local = _lookup(file_part, base, url_to_local)
        return None if local is None else _with_fragment(local, fragment)
    local = _lookup(value, base, url_to_local)
    if local is None:
        return None
    return _with_fragment(local, urlsplit(value.strip()).fragment)


def rewrite_html(html: str, url_to_local: Mapping[str, str], base_url: str) -> str:
    """Point every known reference in ``html`` at its local copy.

    ``url_to_local`` maps normalized absolute URLs to paths relative to the
    document being rewritten. References missing from it are left untouched,
    and a document with no hits comes back unchanged apart from ``<base>``.
    """
    soup = bs4_parse(html)
    base = effective_base_url(soup, base_url)
    changed = 0
    for rule in EXTRACTION_RULES:
        for tag in soup.select(rule.selector):
            value = tag.get(rule.attr)
            if not value:
                continue
            new = _rewrite_value(rule, value, base, url_to_local)
            if new is None:
                continue
            tag[rule.attr] = new
            changed += 1
            if rule.kind == URL:
                for rm in SRI_ATTRS:
                    if rm in tag.attrs:
                        del tag.attrs[rm]
    for style in soup.find_all("style"):
        if style.string:
            new_text = rewrite_css(style.string, url_to_local, base)
            if new_text != style.string:
                # keep the Stylesheet string type so it serializes unescaped
                style.string.replace_with(style.string.__class__(new_text))
                changed += 1
    if not changed:
        return strip_base_tag(html)
    for tag in soup.find_all("base"):
        tag.decompose()
    return serialize_html(soup)


def relink_anchors(html: str, url_to_local: Mapping[str, str]) -> str:
    """Point absolute ``<a href>`` values at local copies listed in ``url_to_local``.

    Used after a crawl, when it is known which pages actually landed on disk.
    """
    soup = bs4_parse(html)
    changed = 0
    for tag in soup.select("a[href]"):
        value = tag.get("href", "").strip()
        if not is_http_url(value):
            continue
        local = url_to_local.get(normalize_url(value))
        if local is None:
            continue
        tag["href"] = _with_fragment(local, urlsplit(value).fragment)
        changed += 1
    if not changed:
        return html
    return serialize_html(soup)


def inline_svg_sprites(html: str, sprite_contents: Dict[str, str]) -> str:
    """Embed external SVG sprite files and point ``<use>`` at in-page ids.

    ``sprite_contents`` is keyed by the sprite path as it appears in the
    (already rewritten) ``use`` reference.
    """
    if not sprite_contents:
        return html
    soup = bs4_parse(html)
    uses = []
    for tag in soup.find_all("use"):
        for attr in ("href", "xlink:href"):
            value = tag.get(attr)
            if value and ".svg" in value:
                uses.append((tag, attr, value))
    sprite_files = list(dict.fromkeys(v.split("#", 1)[0] for _, _, v in uses))

    target = soup.body or soup
    pos = 0
    for sprite_file in sprite_files:
        content = sprite_contents.get(sprite_file)
        if not content:
            continue
        svg = BeautifulSoup(content, "xml").find("svg")
        if svg is None:
            logger.debug("no <svg> root in sprite %s", sprite_file)
            continue
        svg["style"] = "display: none;"
        svg["aria-hidden"] = "true"
        target.insert(pos, svg)
        pos += 1
        for tag, attr, value in uses:
            file_part, _, fragment = value.partition("#")
            if file_part == sprite_file and fragment:
                tag[attr] = f"#{fragment}"
    if not pos:
        return html
    return serialize_html(soup)
