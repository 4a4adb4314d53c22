import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Pattern, Tuple, Union
from urllib.parse import quote, urlsplit

import yaml

from .cookies import Cookie
from .errors import ConfigError
from .urls import compile_patterns

# -------------------- Proxy --------------------


@dataclass(frozen=True)
class ProxyConfig:
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def server(self) -> str:
        return f"http://{self.host}:{self.port}"

    def url(self) -> str:
        auth = ""
        if self.username and self.password:
            auth = f"{quote(self.username, safe='')}:{quote(self.password, safe='')}@"
        return f"http://{auth}{self.host}:{self.port}"

    def to_playwright(self) -> Dict[str, str]:
        out = {"server": self.server}
        if self.username and self.password:
            out["username"] = self.username
            out["password"] = self.password
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProxyConfig":
        try:
            return cls(
                host=str(data["host"]),
                port=int(data["port"]),
                username=data.get("username") or None,
                password=data.get("password") or None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"invalid proxy config: {e}") from e


# -------------------- Job --------------------


@dataclass(frozen=True)
class JobConfig:
    target_url: str
    output_dir: str
    max_depth: int = 3
    delay_ms: int = 100
    follow_external_links: bool = False
    inline_svg_sprites: bool = False
    include_patterns: Tuple[str, ...] = ()
    exclude_patterns: Tuple[str, ...] = ()
    proxy: Optional[ProxyConfig] = None
    user_agent: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Tuple[Cookie, ...] = ()

    # Timeouts
    timeout: float = 30.0
    render_timeout_ms: int = 30000
    challenge_timeout_ms: int = 15000

    def validate(self) -> None:
        p = urlsplit(self.target_url)
        if p.scheme not in {"http", "https"} or not p.netloc:
            raise ConfigError(
                f"invalid target URL {self.target_url!r}; use http:// or https://"
            )
        if not self.output_dir:
            raise ConfigError("output directory is required")
        if self.max_depth < 0:
            raise ConfigError("max depth must be >= 0")
        if self.delay_ms < 0:
            raise ConfigError("delay must be >= 0")
        self.include_regexes()
        self.exclude_regexes()

    def include_regexes(self) -> List[Pattern[str]]:
        return compile_patterns(self.include_patterns)

    def exclude_regexes(self) -> List[Pattern[str]]:
        return compile_patterns(self.exclude_patterns)


def parse_header_lines(lines: List[str]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for h in lines:
        if ":" not in h:
            raise ConfigError(f"invalid header (no colon): {h}")
        k, v = h.split(":", 1)
        headers[k.strip()] = v.strip()
    return headers


def parse_cookie_pairs(pairs: List[str], domain: Optional[str] = None) -> List[Cookie]:
    cookies = []
    for pair in pairs:
        for part in pair.split(";"):
            name, sep, value = part.strip().partition("=")
            if name and sep:
                cookies.append(Cookie(name=name.strip(), value=value.strip(), domain=domain))
    return cookies


# -------------------- Config loader --------------------

CONFIG_SECTIONS = ("crawl", "fetch", "proxy", "render", "auth", "general")


def load_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    p = Path(path)
    suf = p.suffix.lower()
    try:
        if suf in {".toml", ".tml"}:
            with open(p, "rb") as f:
                data = tomllib.load(f) or {}
        elif suf in {".yaml", ".yml"}:
            with open(p, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ConfigError("top-level YAML must be a mapping")
        else:
            raise ConfigError("unsupported config format; use .toml or .yaml")
    except (OSError, tomllib.TOMLDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"could not load config {p}: {e}") from e
    return flatten_config(data)


def flatten_config(cfg: Mapping[str, Any]) -> Dict[str, Any]:
    """Lift known section tables to the top level; the proxy table stays nested."""
    flat = {k: v for k, v in cfg.items() if k not in CONFIG_SECTIONS or k == "proxy"}
    for g in CONFIG_SECTIONS:
        if g != "proxy" and isinstance(cfg.get(g), dict):
            flat.update(cfg[g])
    return flat
