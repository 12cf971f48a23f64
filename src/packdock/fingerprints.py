from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .paths import write_json_atomic

logger = logging.getLogger(__name__)

REGISTRY_FILENAME = "hash_registry.json"


@dataclass(frozen=True)
class FingerprintEntry:
    source_url: str
    content_hash: str
    origin_last_modified: str

    def as_json(self) -> dict[str, str]:
        return {"hash": self.content_hash, "last_modified": self.origin_last_modified}


class FingerprintRegistry:
    """
    URL -> {hash, last_modified} records used to decide whether a cached download is still valid.

    A missing or corrupt registry file loads as an empty registry; the worst outcome of corruption is
    that everything is downloaded again.
    """

    def __init__(self, path: Path, entries: dict[str, FingerprintEntry] | None = None) -> None:
        self.path = path
        self._entries: dict[str, FingerprintEntry] = dict(entries or {})

    @classmethod
    def load(cls, path: Path) -> "FingerprintRegistry":
        if not path.exists():
            return cls(path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable fingerprint registry %s: %s", path, e)
            return cls(path)
        return cls(path, _parse_entries(raw))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: object) -> bool:
        return url in self._entries

    def get(self, url: str) -> FingerprintEntry | None:
        return self._entries.get(url)

    def record(self, url: str, *, content_hash: str, last_modified: str) -> FingerprintEntry:
        entry = FingerprintEntry(source_url=url, content_hash=content_hash, origin_last_modified=last_modified)
        self._entries[url] = entry
        return entry

    def save(self) -> None:
        payload = {"files": {url: self._entries[url].as_json() for url in sorted(self._entries)}}
        write_json_atomic(self.path, payload)


def _parse_entries(raw: Any) -> dict[str, FingerprintEntry]:
    if not isinstance(raw, dict):
        return {}
    files = raw.get("files")
    if not isinstance(files, dict):
        return {}

    entries: dict[str, FingerprintEntry] = {}
    for url, info in files.items():
        if not isinstance(url, str) or not isinstance(info, dict):
            continue
        content_hash = info.get("hash")
        last_modified = info.get("last_modified")
        if not isinstance(content_hash, str) or not isinstance(last_modified, str):
            continue
        entries[url] = FingerprintEntry(source_url=url, content_hash=content_hash, origin_last_modified=last_modified)
    return entries
