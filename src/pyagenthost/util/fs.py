from __future__ import annotations

import os
from pathlib import Path


class FsError(RuntimeError):
    pass


def resolve_path(cwd: Path, path_str: str) -> Path:
    p = Path(path_str).expanduser()
    if not p.is_absolute():
        p = (cwd / p).resolve()
    else:
        p = p.resolve()
    # Tools are confined to the project directory.
    try:
        p.relative_to(cwd.resolve())
    except ValueError:
        raise FsError(f"Path escapes working directory: {path_str}")
    return p


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def append_line_durable(path: Path, line: str) -> None:
    """Append one line and fsync before returning."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(line if line.endswith("\n") else line + "\n")
        f.flush()
        os.fsync(f.fileno())
