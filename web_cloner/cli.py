import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

from .capture import CapturedRequest, parse_captured_request
from .cloner import clone_site, format_duration
from .errors import ConfigError, WebClonerError
from .proxies import ProxyStore
from .settings import (
    JobConfig,
    ProxyConfig,
    load_config_file,
    parse_cookie_pairs,
    parse_header_lines,
)

logger = logging.getLogger(__name__)

# keys of a config file's [proxy] table -> CLI dests
PROXY_KEYS = {
    "host": "proxy_host",
    "port": "proxy_port",
    "username": "proxy_user",
    "password": "proxy_pass",
}

# JobConfig field names accepted in config files -> CLI dests
CONFIG_ALIASES = {
    "target_url": "url",
    "output_dir": "output",
    "max_depth": "depth",
    "delay_ms": "delay",
    "follow_external_links": "follow_external",
    "inline_svg_sprites": "inline_svg",
    "include_patterns": "include",
    "exclude_patterns": "exclude",
}


# -------------------- CLI --------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="web-cloner",
        description="Mirror a website for offline viewing.",
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)

    p.add_argument("url", nargs="?", help="http(s) URL to clone")
    p.add_argument("-o", "--output", type=str, default=None, help="output directory")
    p.add_argument("-d", "--depth", type=int, default=3, help="max link depth")
    p.add_argument("--delay", type=int, default=100, help="delay between pages (ms)")
    p.add_argument(
        "--follow-external", action="store_true", help="crawl pages on other origins"
    )
    p.add_argument(
        "--inline-svg", action="store_true", help="embed external SVG sprites in pages"
    )
    p.add_argument(
        "--include", action="append", default=None, help="only crawl URLs matching (repeatable)"
    )
    p.add_argument(
        "--exclude", action="append", default=None, help="skip URLs matching (repeatable)"
    )

    p.add_argument("--user-agent", type=str, default=None, help="override User-Agent")
    p.add_argument(
        "--header", action="append", default=None, help='extra header "K: V" (repeatable)'
    )
    p.add_argument(
        "--cookie", action="append", default=None, help='seed cookie "name=value" (repeatable)'
    )
    p.add_argument(
        "--from-request",
        type=str,
        default=None,
        help='file holding a DevTools "Copy as fetch" or cURL request ("-" for stdin)',
    )
    p.add_argument("--timeout", type=float, default=30.0, help="HTTP timeout (s)")
    p.add_argument(
        "--render-timeout-ms", type=int, default=30000, help="browser navigation timeout"
    )
    p.add_argument(
        "--challenge-timeout-ms", type=int, default=15000, help="protection challenge wait"
    )

    p.add_argument("--proxy-host", type=str, default=None)
    p.add_argument("--proxy-port", type=int, default=None)
    p.add_argument("--proxy-user", type=str, default=None)
    p.add_argument("--proxy-pass", type=str, default=None)
    p.add_argument("--proxy", dest="proxy_name", type=str, default=None, help="use a saved proxy")
    p.add_argument("--save-proxy", type=str, default=None, help="save the given proxy under NAME")
    p.add_argument("--list-proxies", action="store_true", help="list saved proxies and exit")
    p.add_argument("--proxy-store", type=str, default=None, help="path to the proxy store")

    p.add_argument("--verbose", action="store_true", help="debug logging")
    return p


def config_defaults(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Map a flattened config file onto parser defaults."""
    flat = {}
    for k, v in cfg.items():
        if k != "proxy":
            k = k.replace("-", "_")
            flat[CONFIG_ALIASES.get(k, k)] = v
    proxy = cfg.get("proxy")
    if isinstance(proxy, dict):
        for key, dest in PROXY_KEYS.items():
            if proxy.get(key) is not None:
                flat[dest] = proxy[key]
    elif isinstance(proxy, str):
        flat["proxy_name"] = proxy
    for key in ("include", "exclude", "header", "cookie"):
        if isinstance(flat.get(key), str):
            flat[key] = [flat[key]]
    if isinstance(flat.get("headers"), dict):
        flat.setdefault("header", [])
        flat["header"] = list(flat["header"]) + [
            f"{k}: {v}" for k, v in flat.pop("headers").items()
        ]
    return flat


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        parser.set_defaults(**config_defaults(load_config_file(preliminary.config)))
    return parser.parse_args(argv)


def read_captured_request(path: str) -> CapturedRequest:
    if path == "-":
        text = sys.stdin.read()
    else:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"could not read request file {path}: {e}") from e
    return parse_captured_request(text)


def resolve_proxy(args: argparse.Namespace, store: ProxyStore) -> Optional[ProxyConfig]:
    if args.proxy_host:
        if not args.proxy_port:
            raise ConfigError("--proxy-port is required with --proxy-host")
        proxy = ProxyConfig(
            host=args.proxy_host,
            port=int(args.proxy_port),
            username=args.proxy_user,
            password=args.proxy_pass,
        )
        if args.save_proxy:
            store.save(args.save_proxy, proxy)
        return proxy
    if args.save_proxy:
        raise ConfigError("--save-proxy needs --proxy-host and --proxy-port")
    if args.proxy_name:
        proxy = store.resolve(args.proxy_name)
        if proxy is None:
            raise ConfigError(f"no saved proxy named {args.proxy_name!r}")
        return proxy
    return None


def build_job_config(args: argparse.Namespace, store: ProxyStore) -> JobConfig:
    captured = read_captured_request(args.from_request) if args.from_request else None
    url = args.url or (captured.url if captured else None)
    if not url:
        raise ConfigError("a URL is required")
    host = urlsplit(url).hostname or ""

    headers: Dict[str, str] = {}
    cookies = []
    user_agent = args.user_agent
    if captured is not None:
        for k, v in captured.headers.items():
            if k.lower() == "user-agent":
                user_agent = user_agent or v
            elif not k.startswith(":"):
                headers[k] = v
        cookies.extend(c if c.domain else replace(c, domain=host) for c in captured.cookies)
    headers.update(parse_header_lines(args.header or []))
    cookies.extend(parse_cookie_pairs(args.cookie or [], domain=host))

    return JobConfig(
        target_url=url,
        output_dir=args.output or host or "cloned-site",
        max_depth=args.depth,
        delay_ms=args.delay,
        follow_external_links=args.follow_external,
        inline_svg_sprites=args.inline_svg,
        include_patterns=tuple(args.include or ()),
        exclude_patterns=tuple(args.exclude or ()),
        proxy=resolve_proxy(args, store),
        user_agent=user_agent,
        headers=headers,
        cookies=tuple(cookies),
        timeout=args.timeout,
        render_timeout_ms=args.render_timeout_ms,
        challenge_timeout_ms=args.challenge_timeout_ms,
    )


def main(argv: Optional[List[str]] = None) -> int:
    try:
        args = parse_args(argv)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    store = ProxyStore(args.proxy_store)
    try:
        if args.list_proxies:
            for name in store.names():
                print(name)
            return 0
        config = build_job_config(args, store)
        config.validate()
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    print("Reminder: only clone content you own or have permission to copy.")
    try:
        stats = clone_site(config)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except WebClonerError as e:
        logger.error("clone failed: %s", e)
        return 1
    except KeyboardInterrupt:
        logger.error("interrupted")
        return 1

    print(
        f"Done: {stats.downloaded_pages} page(s), {stats.downloaded_assets} asset(s), "
        f"{stats.failed_downloads} failure(s) in {format_duration(stats.duration)}"
    )
    return 0
