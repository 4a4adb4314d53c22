import logging
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Deque, Dict, Optional, Set
from urllib.parse import quote

from .errors import WebClonerError
from .fetch import Fetcher
from .parser import (
    ExtractedAssets,
    extract_assets,
    extract_css_urls,
    inline_svg_sprites,
    relink_anchors,
    rewrite_css,
    rewrite_html,
)
from .settings import JobConfig
from .storage import atomic_write_json
from .urls import (
    asset_type_for,
    is_binary_asset,
    is_http_url,
    is_same_origin,
    matches_pattern,
    normalize_url,
    relative_path,
    url_to_local_path,
)

logger = logging.getLogger(__name__)

MAPPING_FILE = "url-mapping.json"

# extraction bucket -> recorded asset type (None: decide by extension)
BUCKET_TYPES = {
    "stylesheets": "stylesheet",
    "scripts": "script",
    "images": "image",
    "fonts": "font",
    "svg_sprites": "image",
    "other": None,
}

# characters left as-is when a local path is written into a document
LOCAL_REF_SAFE = "/._-~!$&'()*+,;=:@"

LogSink = Callable[[str], None]


@dataclass(frozen=True)
class FrontierEntry:
    url: str
    depth: int


@dataclass(frozen=True)
class AssetRecord:
    url: str
    local_path: str
    type: str


@dataclass
class CloneStats:
    total_pages: int = 0
    total_assets: int = 0
    downloaded_pages: int = 0
    downloaded_assets: int = 0
    failed_downloads: int = 0
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    @property
    def duration(self) -> float:
        end = self.end_time if self.end_time is not None else time.time()
        return max(0.0, end - self.start_time)


def format_duration(seconds: float) -> str:
    s = int(seconds)
    h, m = s // 3600, (s // 60) % 60
    if h:
        return f"{h}h {m}m {s % 60}s"
    if m:
        return f"{m}m {s % 60}s"
    return f"{s}s"


class _SinkHandler(logging.Handler):
    def __init__(self, sink: LogSink):
        super().__init__()
        self.sink = sink
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.sink(self.format(record))
        except Exception:
            self.handleError(record)


class WebsiteCloner:
    """Breadth-first mirror of one site into ``config.output_dir``."""

    def __init__(
        self,
        config: JobConfig,
        *,
        fetcher: Optional[Fetcher] = None,
        on_log: Optional[LogSink] = None,
    ):
        config.validate()
        self.config = config
        self.output_dir = Path(config.output_dir)
        self.base_url = normalize_url(config.target_url)
        self.fetcher = fetcher or Fetcher(config)
        self.on_log = on_log
        self._include = config.include_regexes()
        self._exclude = config.exclude_regexes()

        self.frontier: Deque[FrontierEntry] = deque()
        self.enqueued: Set[str] = set()
        self.visited: Set[str] = set()
        self.records: Dict[str, AssetRecord] = {}
        # saved pages holding absolute anchors to pages still in the frontier
        self.unlinked_pages: Set[str] = set()
        self.stats = CloneStats()

    # -------------------- Run --------------------

    def run(self) -> CloneStats:
        if self.on_log is None:
            return self._run()
        pkg_logger = logging.getLogger("web_cloner")
        handler = _SinkHandler(self.on_log)
        prev_level = pkg_logger.level
        pkg_logger.addHandler(handler)
        # the sink always sees progress, whatever the host's logging setup
        if pkg_logger.getEffectiveLevel() > logging.INFO:
            pkg_logger.setLevel(logging.INFO)
        try:
            return self._run()
        finally:
            pkg_logger.removeHandler(handler)
            pkg_logger.setLevel(prev_level)

    def _run(self) -> CloneStats:
        self.stats = CloneStats()
        logger.info("starting clone of %s", self.base_url)
        logger.info("output directory: %s", self.output_dir)
        if self.config.proxy is not None:
            logger.info("using proxy: %s:%s", self.config.proxy.host, self.config.proxy.port)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._enqueue(self.base_url, 0)
        try:
            while self.frontier:
                entry = self.frontier.popleft()
                self._process_url(entry)
                if self.frontier and self.config.delay_ms > 0:
                    time.sleep(self.config.delay_ms / 1000.0)
            self._relink_pages()
            self.save_url_mapping()
        finally:
            self.fetcher.close()
        self.stats.end_time = time.time()
        self._log_stats()
        return self.stats

    def _enqueue(self, url: str, depth: int) -> bool:
        if depth > self.config.max_depth or url in self.enqueued or url in self.visited:
            return False
        self.frontier.append(FrontierEntry(url, depth))
        self.enqueued.add(url)
        return True

    # -------------------- Policy --------------------

    def skip_reason(self, url: str, depth: int) -> Optional[str]:
        if url in self.visited:
            return "visited"
        if depth > self.config.max_depth:
            return "depth"
        if self._include and not matches_pattern(url, self._include):
            return "not included"
        if self._exclude and matches_pattern(url, self._exclude):
            return "excluded"
        if not self.config.follow_external_links and not is_same_origin(url, self.base_url):
            return "external"
        return None

    # -------------------- Pages --------------------

    def _process_url(self, entry: FrontierEntry) -> None:
        url = normalize_url(entry.url)
        reason = self.skip_reason(url, entry.depth)
        if reason is not None:
            logger.debug("skip (%s): %s", reason, url)
            return

        self.visited.add(url)
        self.stats.total_pages += 1
        logger.info("[%d] processing: %s", self.stats.downloaded_pages + 1, url)
        try:
            html = self.fetcher.fetch_text(url)
            self.stats.downloaded_pages += 1
            assets = extract_assets(html, url)
            self._download_assets(assets, url)

            if entry.depth < self.config.max_depth:
                for link in assets.links:
                    self._enqueue(normalize_url(link), entry.depth + 1)

            local_path = url_to_local_path(url, self.base_url)
            pending = self._pending_pages()
            html = rewrite_html(html, {**pending, **self._local_table(local_path)}, url)
            if self.config.inline_svg_sprites:
                html = inline_svg_sprites(html, self._sprite_contents(local_path, assets))

            output_path = self.output_dir / local_path
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(html, encoding="utf-8")
            self.records[url] = AssetRecord(url, local_path, "document")
            if pending:
                self.unlinked_pages.add(local_path)
            logger.info("saved page: %s", local_path)
        except (WebClonerError, OSError) as e:
            self.stats.failed_downloads += 1
            logger.error("failed to process %s: %s", url, e)

    def _download_assets(self, assets: ExtractedAssets, referer: str) -> None:
        for url, bucket in assets.downloadable():
            asset_type = BUCKET_TYPES.get(bucket) or asset_type_for(url)
            self._download_asset(url, referer, asset_type)

    # -------------------- Assets --------------------

    def _download_asset(self, url: str, referer: str, asset_type: str) -> None:
        url = normalize_url(url)
        if not is_http_url(url) or url in self.visited or url in self.records:
            return
        self.visited.add(url)
        self.stats.total_assets += 1

        local_path = url_to_local_path(url, self.base_url)
        output_path = self.output_dir / local_path
        try:
            self.fetcher.fetch_and_save(
                url,
                output_path,
                is_binary_asset(url, asset_type),
                referer,
                asset_type,
            )
        except (WebClonerError, OSError) as e:
            self.stats.failed_downloads += 1
            logger.error("  failed to download %s: %s", url, e)
            return

        self.stats.downloaded_assets += 1
        self.records[url] = AssetRecord(url, local_path, asset_type)
        logger.info("  downloaded: %s", local_path)

        if asset_type == "stylesheet":
            self._process_stylesheet(output_path, url, local_path)

    def _process_stylesheet(self, path: Path, css_url: str, local_path: str) -> None:
        """Fetch what a saved stylesheet references, then rewrite it in place."""
        try:
            css = path.read_text(encoding="utf-8")
        except OSError as e:
            self.stats.failed_downloads += 1
            logger.error("  failed to read stylesheet %s: %s", path, e)
            return
        for u in extract_css_urls(css, css_url):
            self._download_asset(u, css_url, asset_type_for(u))
        new_css = rewrite_css(css, self._local_table(local_path), css_url)
        if new_css == css:
            return
        try:
            path.write_text(new_css, encoding="utf-8")
        except OSError as e:
            self.stats.failed_downloads += 1
            logger.error("  failed to rewrite stylesheet %s: %s", path, e)

    # -------------------- Substitution --------------------

    def _local_table(self, from_path: str) -> Dict[str, str]:
        """Normalized URL -> reference to its local copy, relative to ``from_path``."""
        return {
            u: quote(relative_path(from_path, r.local_path), safe=LOCAL_REF_SAFE)
            for u, r in self.records.items()
        }

    def _pending_pages(self) -> Dict[str, str]:
        """Frontier pages that will be crawled, mapped to their absolute URL.

        Anchors to them are made absolute now and pointed at the local file
        by ``_relink_pages`` once the page has actually been saved.
        """
        return {
            e.url: e.url
            for e in self.frontier
            if e.url not in self.records and self.skip_reason(e.url, e.depth) is None
        }

    def _relink_pages(self) -> None:
        for local_path in sorted(self.unlinked_pages):
            path = self.output_dir / local_path
            try:
                html = path.read_text(encoding="utf-8")
                new_html = relink_anchors(html, self._local_table(local_path))
                if new_html != html:
                    path.write_text(new_html, encoding="utf-8")
            except OSError as e:
                self.stats.failed_downloads += 1
                logger.error("failed to relink %s: %s", path, e)
        self.unlinked_pages.clear()

    def _sprite_contents(self, from_path: str, assets: ExtractedAssets) -> Dict[str, str]:
        contents: Dict[str, str] = {}
        for u in assets.svg_sprites:
            rec = self.records.get(normalize_url(u))
            if rec is None:
                continue
            try:
                text = (self.output_dir / rec.local_path).read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("  could not read SVG sprite %s: %s", rec.local_path, e)
                continue
            ref = quote(relative_path(from_path, rec.local_path), safe=LOCAL_REF_SAFE)
            contents[ref] = text
        return contents

    # -------------------- Output --------------------

    def url_mapping(self) -> Dict[str, str]:
        return {u: r.local_path for u, r in self.records.items()}

    def save_url_mapping(self) -> Path:
        path = self.output_dir / MAPPING_FILE
        atomic_write_json(path, self.url_mapping())
        return path

    def _log_stats(self) -> None:
        s = self.stats
        logger.info("=" * 60)
        logger.info("pages downloaded: %d/%d", s.downloaded_pages, s.total_pages)
        logger.info("assets downloaded: %d/%d", s.downloaded_assets, s.total_assets)
        logger.info("failed downloads: %d", s.failed_downloads)
        logger.info("duration: %s", format_duration(s.duration))
        logger.info("output: %s", self.output_dir)
        logger.info("=" * 60)


def clone_site(
    config: JobConfig,
    *,
    fetcher: Optional[Fetcher] = None,
    on_log: Optional[LogSink] = None,
) -> CloneStats:
    return WebsiteCloner(config, fetcher=fetcher, on_log=on_log).run()
