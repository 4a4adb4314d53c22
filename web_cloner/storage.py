import json
import os
from pathlib import Path


def atomic_write_json(path: Path, data: dict) -> None:
    """Write ``data`` as JSON so readers never see a half-written file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
    os.replace(tmp, path)
