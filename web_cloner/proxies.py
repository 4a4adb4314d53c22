import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import ConfigError
from .settings import ProxyConfig
from .storage import atomic_write_json

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = Path.home() / ".web-cloner" / "proxy-config.json"


def _now_ms() -> int:
    return int(time.time() * 1000)


class ProxyStore:
    """Named proxy configurations persisted as one JSON file."""

    def __init__(self, path: Union[str, Path, None] = None):
        self.path = Path(path) if path is not None else DEFAULT_STORE_PATH

    def _read(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"could not read proxy store {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"proxy store {self.path} must hold a JSON object")
        return data

    def names(self) -> List[str]:
        return sorted(self._read())

    def save(self, name: str, proxy: ProxyConfig) -> None:
        data = self._read()
        now = _now_ms()
        created = data.get(name, {}).get("createdAt", now)
        data[name] = {
            "host": proxy.host,
            "port": proxy.port,
            "username": proxy.username,
            "password": proxy.password,
            "createdAt": created,
            "updatedAt": now,
        }
        atomic_write_json(self.path, data)
        logger.info("saved proxy config: %s", name)

    def resolve(self, name: str) -> Optional[ProxyConfig]:
        entry = self._read().get(name)
        if entry is None:
            return None
        return ProxyConfig.from_dict(entry)

    load = resolve

    def delete(self, name: str) -> bool:
        data = self._read()
        if name not in data:
            return False
        del data[name]
        atomic_write_json(self.path, data)
        logger.info("deleted proxy config: %s", name)
        return True
