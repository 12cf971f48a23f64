"""
Filename heuristics used to skip extra mods that already look installed.

This is best-effort de-duplication only: nothing that must be correct depends on it.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

LOADER_MARKERS = (
    "_fabric_",
    "_forge_",
    "_neoforge_",
    "_quilt_",
    "-fabric-",
    "-forge-",
    "-neoforge-",
    "-quilt-",
    "_fabric",
    "_forge",
    "_neoforge",
    "_quilt",
    "-fabric",
    "-forge",
    "-neoforge",
    "-quilt",
)
VERSION_MARKERS = ("_v", "_mc", "-v", "-mc", "+v", "+mc")

# Names shorter than this only ever match exactly.
MIN_PARTIAL_MATCH_LEN = 3

_SEPARATORS_RE = re.compile(r"[-_+]")


def _cut_at_first(name: str, markers: tuple[str, ...]) -> str:
    for marker in markers:
        pos = name.find(marker)
        if pos != -1:
            return name[:pos]
    return name


def _looks_like_version(part: str) -> bool:
    return part[0].isdigit() or part.startswith("1.") or all(c.isdigit() or c == "." for c in part)


def extract_mod_name_from_filename(filename: str) -> str:
    name = _cut_at_first(filename.lower(), LOADER_MARKERS)
    name = _cut_at_first(name, VERSION_MARKERS)

    parts: list[str] = []
    for part in _SEPARATORS_RE.split(name):
        if not part:
            continue
        if _looks_like_version(part):
            break
        parts.append(part)
    return "-".join(parts).rstrip("-_").replace("_", "-")


def normalize_mod_name(name: str) -> str:
    return name.lower().replace("_", "").replace(" ", "").replace("-", "")


def scan_installed_mod_names(mods_dir: Path) -> set[str]:
    names: set[str] = set()
    try:
        entries = list(mods_dir.iterdir())
    except FileNotFoundError:
        return names
    except OSError as e:
        logger.warning("Failed to scan existing mods in %s: %s", mods_dir, e)
        return names

    for path in entries:
        if path.suffix != ".jar" or not path.is_file():
            continue
        normalized = normalize_mod_name(extract_mod_name_from_filename(path.stem))
        if normalized:
            names.add(normalized)
    return names


def is_probably_installed(mod_name: str, existing: set[str]) -> bool:
    wanted = normalize_mod_name(mod_name)
    if not wanted:
        return False
    if wanted in existing:
        return True
    if len(wanted) < MIN_PARTIAL_MATCH_LEN:
        return False
    for name in existing:
        if len(name) < MIN_PARTIAL_MATCH_LEN:
            continue
        if wanted in name or name in wanted:
            logger.debug("'%s' matches installed '%s'", wanted, name)
            return True
    return False
