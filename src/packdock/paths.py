from __future__ import annotations

import json
import os
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any


def write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)


def write_bytes_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".part")
    try:
        tmp.write_bytes(data)
        tmp.replace(path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def canonical_dir(path: Path) -> Path:
    # Falls back to the absolute literal path when the filesystem refuses to resolve it.
    try:
        return path.resolve()
    except (OSError, RuntimeError):
        return Path(os.path.abspath(path))


def is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


def has_unsafe_parts(name: str) -> bool:
    """True for archive/manifest names that are absolute or walk up with '..'."""
    if not name:
        return False
    if name.startswith(("/", "\\")):
        return True
    win = PureWindowsPath(name)
    if win.drive or win.root:
        return True
    return ".." in PurePosixPath(name.replace("\\", "/")).parts


def resolve_within(root: Path, relative: str) -> Path | None:
    """Join relative onto root and resolve it; None when the result leaves root."""
    if has_unsafe_parts(relative):
        return None
    target = (root / relative).resolve()
    if not is_within(target, root):
        return None
    return target
