from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlsplit

from .client import PackdockClient, PackdockError
from .events import DOWNLOAD_PROGRESS, ProgressEvent, ProgressListener, Throttle, emit, percent_of
from .fingerprints import REGISTRY_FILENAME, FingerprintRegistry

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class FetchResult:
    path: Path
    content_hash: str
    downloaded: bool
    last_modified: str


@dataclass(frozen=True)
class UpdateCheck:
    update_available: bool
    reason: str
    last_modified: str

    @property
    def message(self) -> str:
        prefix = "Yes" if self.update_available else "No"
        return f"{prefix}, {self.reason} (Last modified: {self.last_modified})"


def cache_filename(url: str) -> str:
    path = urlsplit(url).path
    name = unquote(path.rsplit("/", 1)[-1]) if path else ""
    # Never let a URL segment name a path outside the cache dir.
    if name and name not in (".", "..") and "/" not in name and "\\" not in name:
        return name
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()
    return f"download-{digest[:8]}.zip"


def needs_download(
    *,
    force: bool,
    cached_file: Path,
    registry: FingerprintRegistry,
    url: str,
    last_modified: str,
) -> bool:
    if force:
        return True
    try:
        if cached_file.stat().st_size <= 0:
            return True
    except OSError:
        return True
    entry = registry.get(url)
    if entry is None:
        return True
    return entry.origin_last_modified != last_modified


class CachedFetcher:
    def __init__(
        self,
        *,
        client: PackdockClient,
        cache_dir: Path,
        listener: ProgressListener | None = None,
        progress_interval_s: float = 0.1,
    ) -> None:
        self.client = client
        self.cache_dir = cache_dir.expanduser()
        self.registry_path = self.cache_dir / REGISTRY_FILENAME
        self.listener = listener
        self.progress_interval_s = progress_interval_s

    def cached_path(self, url: str) -> Path:
        return self.cache_dir / cache_filename(url)

    def check_for_updates(self, url: str) -> UpdateCheck:
        last_modified = self.client.last_modified(url)
        entry = FingerprintRegistry.load(self.registry_path).get(url)
        if entry is None:
            return UpdateCheck(True, "file has not been downloaded yet", last_modified)
        if entry.origin_last_modified != last_modified:
            return UpdateCheck(True, "a new version is available", last_modified)
        return UpdateCheck(False, "you have the latest version", last_modified)

    def fetch(self, url: str, *, force: bool = False) -> FetchResult:
        last_modified = self.client.last_modified(url)
        logger.debug("Last-Modified for %s: %r", url, last_modified)

        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PackdockError(f"Could not create cache directory: {self.cache_dir}") from e

        registry = FingerprintRegistry.load(self.registry_path)
        target = self.cached_path(url)

        entry = registry.get(url)
        if entry is not None and not needs_download(
            force=force, cached_file=target, registry=registry, url=url, last_modified=last_modified
        ):
            logger.info("Using cached %s (sha256 %s)", target.name, entry.content_hash)
            return FetchResult(path=target, content_hash=entry.content_hash, downloaded=False, last_modified=last_modified)

        content_hash = self._download(url, target)
        # Registry is written only after the artifact is complete on disk.
        registry.record(url, content_hash=content_hash, last_modified=last_modified)
        try:
            registry.save()
        except OSError as e:
            raise PackdockError(f"Failed to write fingerprint registry {self.registry_path}: {e}") from e
        logger.info("Downloaded %s (sha256 %s)", target.name, content_hash)
        return FetchResult(path=target, content_hash=content_hash, downloaded=True, last_modified=last_modified)

    def _download(self, url: str, target: Path) -> str:
        part = target.with_name(target.name + ".part")
        hasher = hashlib.sha256()
        downloaded = 0
        total = 0
        throttle = Throttle(self.progress_interval_s)
        try:
            with self.client.stream(url) as resp, part.open("wb") as out:
                total = int(resp.headers.get("content-length") or 0)
                for chunk in resp.iter_bytes(CHUNK_SIZE):
                    hasher.update(chunk)
                    out.write(chunk)
                    downloaded += len(chunk)
                    if throttle.ready():
                        self._progress(target.name, downloaded, total)
            part.replace(target)
        except OSError as e:
            part.unlink(missing_ok=True)
            raise PackdockError(f"Failed to write {target}: {e}") from e
        except PackdockError:
            part.unlink(missing_ok=True)
            raise

        emit(self.listener, ProgressEvent(DOWNLOAD_PROGRESS, 100, downloaded, total or downloaded, target.name))
        return hasher.hexdigest()

    def _progress(self, filename: str, downloaded: int, total: int) -> None:
        emit(self.listener, ProgressEvent(DOWNLOAD_PROGRESS, percent_of(downloaded, total), downloaded, total, filename))
