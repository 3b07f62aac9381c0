"""UTF-8 text and JSON file helpers used by the state store and CLI."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

PathLike = Path | str


def _as_path(path: PathLike) -> Path:
    return path if isinstance(path, Path) else Path(path)


def read_text(path: PathLike, errors: str = "strict") -> str:
    """Read *path* as UTF-8 text."""
    return _as_path(path).read_text(encoding="utf-8", errors=errors)


def write_text(path: PathLike, text: str) -> None:
    """Write *text* to *path* as UTF-8, creating parent directories."""
    p = _as_path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")


def read_json(path: PathLike) -> Any:
    """Decode the JSON document at *path*. Raises ``json.JSONDecodeError``."""
    return json.loads(read_text(path))


def write_json(path: PathLike, data: Any) -> None:
    """Write *data* as pretty-printed JSON (2-space indent)."""
    write_text(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")
