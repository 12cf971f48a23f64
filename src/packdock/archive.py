from __future__ import annotations

import json
import logging
import shutil
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .client import PackdockError
from .events import EXTRACTION_PROGRESS, ProgressEvent, ProgressListener, Throttle, emit, percent_of
from .fetcher import CachedFetcher
from .paths import canonical_dir, has_unsafe_parts, is_within, resolve_within

logger = logging.getLogger(__name__)

MANIFEST_ENTRY = "manifest.json"
MARKER_FILENAME = ".installed_hash"

# Raised by zipfile while reading corrupt, truncated, encrypted or unsupported entries.
ZIP_READ_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError)


class ArchiveError(PackdockError):
    pass


class UnsafeArchiveError(ArchiveError):
    pass


@dataclass(frozen=True)
class ArchiveManifest:
    delete: tuple[str, ...] = ()
    notes: str | None = None
    required_files: tuple[str, ...] | None = None


@dataclass(frozen=True)
class InstallOutcome:
    extracted: bool
    notes: str | None
    verified: bool


def _str_list(value: Any) -> tuple[str, ...] | None:
    if not isinstance(value, list):
        return None
    return tuple(v for v in value if isinstance(v, str) and v.strip())


def parse_archive_manifest(raw: Any) -> ArchiveManifest | None:
    if not isinstance(raw, dict):
        return None
    notes = raw.get("notes")
    return ArchiveManifest(
        delete=_str_list(raw.get("delete")) or (),
        notes=notes if isinstance(notes, str) and notes.strip() else None,
        required_files=_str_list(raw.get("required_files")),
    )


def read_archive_manifest(zf: zipfile.ZipFile) -> ArchiveManifest | None:
    try:
        data = zf.read(MANIFEST_ENTRY)
    except KeyError:
        return None
    try:
        raw = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unparseable %s: %s", MANIFEST_ENTRY, e)
        return None
    manifest = parse_archive_manifest(raw)
    if manifest is None:
        logger.warning("Ignoring %s: expected a JSON object", MANIFEST_ENTRY)
    return manifest


def verify_required_files(target_dir: Path, manifest: ArchiveManifest | None) -> bool:
    if manifest is None or not manifest.required_files:
        return True
    for rel in manifest.required_files:
        if not (target_dir / rel).exists():
            logger.info("Missing required file: %s", target_dir / rel)
            return False
    return True


def needs_extraction(*, current_marker: str, new_hash: str, verified: bool, force: bool) -> bool:
    return force or current_marker != new_hash or not verified


def read_marker(target_dir: Path) -> str:
    path = target_dir / MARKER_FILENAME
    try:
        return path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return ""
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read install marker %s: %s", path, e)
        return ""


def check_entry_paths(zf: zipfile.ZipFile, target_dir: Path) -> list[tuple[zipfile.ZipInfo, Path]]:
    """
    Map every archive entry (except the embedded manifest) to its output path.

    Raises UnsafeArchiveError for names that are absolute, contain '..', or resolve outside target_dir.
    Nothing is written here, so a rejected archive leaves the target untouched.
    """
    planned: list[tuple[zipfile.ZipInfo, Path]] = []
    for info in zf.infolist():
        name = info.filename
        if not name or name == MANIFEST_ENTRY:
            continue
        if has_unsafe_parts(name):
            raise UnsafeArchiveError(f"Invalid zip file: entry {name!r} contains directory traversal patterns")
        out = resolve_within(target_dir, name)
        if out is None:
            raise UnsafeArchiveError(f"Invalid zip file: entry {name!r} would extract outside target directory")
        planned.append((info, out))
    return planned


def apply_deletions(target_dir: Path, paths: tuple[str, ...]) -> int:
    removed = 0
    for rel in paths:
        full = (target_dir / rel).resolve()
        if has_unsafe_parts(rel) or not is_within(full, target_dir) or full == target_dir:
            logger.warning("Refusing to delete outside install directory: %s", rel)
            continue
        if not full.exists() and not full.is_symlink():
            continue
        try:
            if full.is_dir() and not full.is_symlink():
                shutil.rmtree(full)
            else:
                full.unlink()
            removed += 1
        except OSError as e:
            logger.warning("Failed to delete %s: %s", full, e)
    return removed


class ArchiveInstaller:
    def __init__(self, *, listener: ProgressListener | None = None, progress_interval_s: float = 0.1) -> None:
        self.listener = listener
        self.progress_interval_s = progress_interval_s

    def install(self, archive_path: Path, target_dir: Path, *, content_hash: str, force: bool = False) -> InstallOutcome:
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArchiveError(f"Failed to create extract directory {target_dir}: {e}") from e
        target = canonical_dir(target_dir)

        try:
            with zipfile.ZipFile(archive_path, "r") as zf:
                manifest = read_archive_manifest(zf)
                current = read_marker(target)
                # A matching hash is not enough: required files may have been removed since.
                verified = bool(current) and current == content_hash and verify_required_files(target, manifest)

                if not needs_extraction(current_marker=current, new_hash=content_hash, verified=verified, force=force):
                    logger.info("%s already up to date (%s)", target, content_hash)
                    return InstallOutcome(extracted=False, notes=None, verified=True)

                planned = check_entry_paths(zf, target)
                # Cleared before any change so an interrupted extraction is never taken as installed.
                (target / MARKER_FILENAME).unlink(missing_ok=True)
                if manifest is not None and manifest.delete:
                    apply_deletions(target, manifest.delete)
                self._extract(zf, planned)
        except PackdockError:
            raise
        except ZIP_READ_ERRORS as e:
            raise ArchiveError(f"Failed to read zip archive {archive_path}: {e}") from e
        except OSError as e:
            raise ArchiveError(f"Extraction into {target} failed: {e}") from e

        notes = manifest.notes if manifest is not None else None
        marker = target / MARKER_FILENAME
        verified = verify_required_files(target, manifest)
        try:
            if verified:
                marker.write_text(content_hash, encoding="utf-8")
            else:
                logger.warning("Required files still missing after extracting %s; not marking installed", archive_path)
                marker.unlink(missing_ok=True)
        except OSError as e:
            raise ArchiveError(f"Failed to write installation hash {marker}: {e}") from e

        return InstallOutcome(extracted=True, notes=notes, verified=verified)

    def _extract(self, zf: zipfile.ZipFile, planned: list[tuple[zipfile.ZipInfo, Path]]) -> None:
        total = len(planned)
        throttle = Throttle(self.progress_interval_s)
        for index, (info, out) in enumerate(planned, start=1):
            if info.is_dir():
                out.mkdir(parents=True, exist_ok=True)
            else:
                out.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info, "r") as src, out.open("wb") as dst:
                    shutil.copyfileobj(src, dst)
            if throttle.ready():
                emit(
                    self.listener,
                    ProgressEvent(EXTRACTION_PROGRESS, percent_of(index, total), index, total, info.filename),
                )
        emit(self.listener, ProgressEvent(EXTRACTION_PROGRESS, 100, total, total, "Extraction complete"))


def download_and_extract(fetcher: CachedFetcher, installer: ArchiveInstaller, url: str, target_dir: Path, *, force: bool = False) -> str:
    fetched = fetcher.fetch(url, force=force)
    outcome = installer.install(fetched.path, target_dir, content_hash=fetched.content_hash, force=force)

    notes = f" Notes: {outcome.notes}" if outcome.extracted and outcome.notes else ""
    if fetched.downloaded:
        if outcome.extracted:
            status = f"Downloaded and extracted new version.{notes}"
        else:
            status = "Downloaded but extraction skipped (files up to date)"
    elif outcome.extracted:
        status = f"Used cached file and extracted.{notes}"
    else:
        status = "All files already up to date"
    return f"{status} (Hash: {fetched.content_hash})"
