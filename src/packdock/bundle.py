from __future__ import annotations

import hashlib
import json
import logging
import shutil
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .archive import ZIP_READ_ERRORS, ArchiveError, UnsafeArchiveError
from .client import PackdockClient, PackdockError
from .events import DOWNLOAD_PROGRESS, ProgressEvent, ProgressListener, emit, percent_of
from .fetcher import CachedFetcher
from .paths import canonical_dir, has_unsafe_parts, resolve_within, write_bytes_atomic
from .registry import ResolvedVersion
from .resolver import ResolutionState, primary_file

logger = logging.getLogger(__name__)

INDEX_ENTRY = "modrinth.index.json"
BUNDLE_SUFFIX = ".mrpack"
# Applied in this order; later trees win.
OVERRIDE_PREFIXES = ("overrides/", "client-overrides/")
SUPPORTED_HASHES = ("sha512", "sha1")


@dataclass(frozen=True)
class IndexFile:
    path: str
    downloads: tuple[str, ...]
    hashes: dict[str, str]


@dataclass(frozen=True)
class BundleResult:
    version: ResolvedVersion
    files_total: int
    files_downloaded: int
    files_failed: tuple[str, ...]
    overrides_extracted: int


def parse_index(raw: Any) -> list[IndexFile]:
    if not isinstance(raw, dict) or not isinstance(raw.get("files"), list):
        raise PackdockError(f"Invalid {INDEX_ENTRY}: missing 'files' list")
    files: list[IndexFile] = []
    for item in raw["files"]:
        if not isinstance(item, dict) or not isinstance(item.get("path"), str):
            continue
        downloads = item.get("downloads")
        hashes = item.get("hashes")
        files.append(
            IndexFile(
                path=item["path"],
                downloads=tuple(u for u in downloads if isinstance(u, str)) if isinstance(downloads, list) else (),
                hashes={k: v for k, v in hashes.items() if isinstance(v, str)} if isinstance(hashes, dict) else {},
            )
        )
    return files


def hash_matches(data: bytes, hashes: dict[str, str]) -> bool:
    for algo in SUPPORTED_HASHES:
        expected = hashes.get(algo)
        if expected:
            return hashlib.new(algo, data).hexdigest() == expected.lower()
    return True


class BundleInstaller:
    def __init__(
        self,
        *,
        client: PackdockClient,
        fetcher: CachedFetcher,
        listener: ProgressListener | None = None,
    ) -> None:
        self.client = client
        self.fetcher = fetcher
        self.listener = listener

    def install(
        self,
        version: ResolvedVersion,
        instance_dir: Path,
        *,
        state: ResolutionState | None = None,
        force: bool = False,
    ) -> BundleResult:
        state = state if state is not None else ResolutionState()
        artifact = primary_file(version, suffix=BUNDLE_SUFFIX)
        fetched = self.fetcher.fetch(artifact.url, force=force)

        instance = canonical_dir(instance_dir)
        bundle_dir = instance / "mrpack"
        game_dir = instance / ".minecraft"
        try:
            bundle_dir.mkdir(parents=True, exist_ok=True)
            game_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PackdockError(f"Failed to create instance directories under {instance}: {e}") from e
        game_dir = canonical_dir(game_dir)

        try:
            with zipfile.ZipFile(fetched.path, "r") as zf:
                index_raw = self._read_index(zf)
                overrides = self._extract_overrides(zf, game_dir)
        except PackdockError:
            raise
        except ZIP_READ_ERRORS as e:
            raise ArchiveError(f"Failed to read {artifact.filename} as zip: {e}") from e
        except OSError as e:
            raise ArchiveError(f"Failed to extract {artifact.filename}: {e}") from e

        files: list[IndexFile] = []
        if index_raw is not None:
            try:
                write_bytes_atomic(bundle_dir / INDEX_ENTRY, index_raw)
                files = parse_index(json.loads(index_raw.decode("utf-8")))
            except OSError as e:
                raise PackdockError(f"Failed to save {INDEX_ENTRY}: {e}") from e
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise PackdockError(f"Failed to parse {INDEX_ENTRY}: {e}") from e
        else:
            logger.warning("%s has no %s", artifact.filename, INDEX_ENTRY)

        downloaded = 0
        failed: list[str] = []
        for index, entry in enumerate(files):
            emit(
                self.listener,
                ProgressEvent(
                    DOWNLOAD_PROGRESS,
                    percent_of(index, len(files)),
                    index + 1,
                    len(files),
                    f"Downloading mod: {entry.path}",
                    "mods",
                ),
            )
            if self._download_entry(entry, game_dir, state):
                downloaded += 1
            else:
                failed.append(entry.path)
        emit(
            self.listener,
            ProgressEvent(DOWNLOAD_PROGRESS, 100, len(files), len(files), "Mod downloads completed", "mods"),
        )

        return BundleResult(
            version=version,
            files_total=len(files),
            files_downloaded=downloaded,
            files_failed=tuple(failed),
            overrides_extracted=overrides,
        )

    def _read_index(self, zf: zipfile.ZipFile) -> bytes | None:
        try:
            return zf.read(INDEX_ENTRY)
        except KeyError:
            return None

    def _extract_overrides(self, zf: zipfile.ZipFile, game_dir: Path) -> int:
        planned: list[tuple[zipfile.ZipInfo, Path]] = []
        for prefix in OVERRIDE_PREFIXES:
            for info in zf.infolist():
                name = info.filename
                if not name.startswith(prefix) or name == prefix:
                    continue
                relative = name[len(prefix) :]
                if has_unsafe_parts(name) or has_unsafe_parts(relative):
                    raise UnsafeArchiveError(f"Invalid bundle: entry {name!r} contains directory traversal patterns")
                out = resolve_within(game_dir, relative)
                if out is None:
                    raise UnsafeArchiveError(f"Invalid bundle: entry {name!r} would extract outside target directory")
                planned.append((info, out))

        count = 0
        for info, out in planned:
            if info.is_dir():
                out.mkdir(parents=True, exist_ok=True)
                continue
            out.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(info, "r") as src, out.open("wb") as dst:
                shutil.copyfileobj(src, dst)
            count += 1
        return count

    def _download_entry(self, entry: IndexFile, game_dir: Path, state: ResolutionState) -> bool:
        target = resolve_within(game_dir, entry.path)
        if target is None:
            logger.warning("Skipping bundle file outside instance: %s", entry.path)
            return False

        for url in entry.downloads:
            try:
                data = self.client.get_bytes(url)
            except PackdockError as e:
                logger.info("Download of %s from %s failed: %s", entry.path, url, e)
                continue
            if not hash_matches(data, entry.hashes):
                logger.warning("Hash mismatch for %s from %s", entry.path, url)
                continue
            try:
                write_bytes_atomic(target, data)
            except OSError as e:
                logger.warning("Failed to write %s: %s", target, e)
                return False
            state.record_file(target.name)
            return True

        logger.warning("Failed to download %s from any source", entry.path)
        return False
