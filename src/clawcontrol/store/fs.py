"""Small filesystem helpers shared by the stores."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional


def write_text_atomic(path: Path, content: str, mode: Optional[int] = None) -> None:
    """Write ``content`` to ``path`` through a temp file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(content, encoding="utf-8")
    if mode is not None:
        os.chmod(tmp, mode)
    os.replace(tmp, path)


def write_json_atomic(path: Path, payload: Any) -> None:
    write_text_atomic(path, json.dumps(payload, indent=2) + "\n")


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))
