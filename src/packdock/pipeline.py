from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .archive import ArchiveInstaller, download_and_extract
from .bundle import BundleInstaller, BundleResult
from .client import PackdockClient, PackdockError
from .config import Config
from .events import DOWNLOAD_PROGRESS, ProgressEvent, ProgressListener, emit, percent_of
from .fetcher import CachedFetcher
from .instance import ensure_instance, write_instance_descriptor
from .modnames import is_probably_installed, scan_installed_mod_names
from .paths import write_json_atomic
from .planner import PackManifest, UpdatePlan, parse_pack_manifest, plan, record_from_manifest, save_record
from .registry import ModrinthRepository, Platform, VersionRepository
from .resolver import DependencyResolver, ResolutionState

logger = logging.getLogger(__name__)

CURRENT_MANIFEST_FILENAME = ".current_manifest.json"
DOWNLOADED_FILES_FILENAME = ".downloaded_files.json"


@dataclass
class InstallReport:
    instance_dir: Path
    bundle: BundleResult | None = None
    mods_attempted: int = 0
    mods_skipped: list[str] = field(default_factory=list)
    mods_installed: list[str] = field(default_factory=list)
    mods_failed: list[str] = field(default_factory=list)
    overrides_applied: list[str] = field(default_factory=list)
    overrides_failed: list[str] = field(default_factory=list)
    downloaded_files: list[str] = field(default_factory=list)
    cleaned: int = 0

    @property
    def summary(self) -> dict[str, int]:
        return {
            "attempted": self.mods_attempted,
            "skipped": len(self.mods_skipped),
            "downloaded": len(self.mods_installed),
            "failed": len(self.mods_failed),
            "overrides_applied": len(self.overrides_applied),
            "overrides_failed": len(self.overrides_failed),
        }

    def as_json(self) -> dict[str, Any]:
        bundle: dict[str, Any] | None = None
        if self.bundle is not None:
            bundle = {
                "version": self.bundle.version.version_label,
                "files_total": self.bundle.files_total,
                "files_downloaded": self.bundle.files_downloaded,
                "files_failed": list(self.bundle.files_failed),
                "overrides_extracted": self.bundle.overrides_extracted,
            }
        return {
            "instance_dir": str(self.instance_dir),
            "bundle": bundle,
            "summary": self.summary,
            "mods_skipped": list(self.mods_skipped),
            "mods_installed": list(self.mods_installed),
            "mods_failed": list(self.mods_failed),
            "overrides_applied": list(self.overrides_applied),
            "overrides_failed": list(self.overrides_failed),
            "downloaded_files": list(self.downloaded_files),
        }


class PackInstaller:
    """
    Installs or updates one launcher instance from a pack manifest.

    The modpack bundle is mandatory; extra mods and overrides are best-effort and their failures only show
    up in the returned report.
    """

    def __init__(
        self,
        config: Config,
        client: PackdockClient,
        *,
        repo: VersionRepository | None = None,
        listener: ProgressListener | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.repo = repo if repo is not None else ModrinthRepository(client, base_url=config.registry_url)
        self.listener = listener
        self.fetcher = CachedFetcher(client=client, cache_dir=config.resolved_cache_dir(), listener=listener)
        self.resolver = DependencyResolver(self.repo, listener=listener)
        self.bundles = BundleInstaller(client=client, fetcher=self.fetcher, listener=listener)
        self.archives = ArchiveInstaller(listener=listener)

    def _instance_base(self) -> Path:
        if not self.config.instance_base:
            raise PackdockError("instance_base is not configured (set it with `packdock config set --instance-base`)")
        return Path(self.config.instance_base).expanduser()

    def _stage(self, percent: int, message: str, stage: str, current: int = 0, total: int = 0) -> None:
        emit(self.listener, ProgressEvent(DOWNLOAD_PROGRESS, percent, current, total, message, stage))

    def fetch_manifest(self, url: str) -> PackManifest:
        return parse_pack_manifest(self.client.get_json(url))

    def check_updates(self, manifest_url: str) -> UpdatePlan:
        manifest = self.fetch_manifest(manifest_url)
        return plan(manifest, self._instance_base() / self.config.instance_folder)

    def platform_for(self, manifest: PackManifest) -> Platform:
        return Platform(
            game_version=manifest.instance.minecraft_version or self.config.game_version,
            loader=manifest.instance.loader or self.config.loader,
        )

    def install_from_manifest(self, manifest_url: str, *, force: bool = False) -> InstallReport:
        manifest = self.fetch_manifest(manifest_url)
        return self.install(manifest, force=force)

    def install(self, manifest: PackManifest, *, force: bool = False) -> InstallReport:
        instance_dir = ensure_instance(self._instance_base(), self.config.instance_folder)
        game_dir = instance_dir / ".minecraft"
        mods_dir = game_dir / "mods"
        state = ResolutionState()
        report = InstallReport(instance_dir=instance_dir)

        self._stage(0, f"Installing modpack: {manifest.instance.name}", "modpack")
        version = self.repo.get_version(manifest.instance.name, manifest.instance.version)
        report.bundle = self.bundles.install(version, instance_dir, state=state, force=force)
        write_instance_descriptor(instance_dir, version, display_name=manifest.instance.name)
        self._stage(30, "Modpack installed", "modpack")

        self._install_extra_mods(manifest, mods_dir, state, report)
        self._apply_overrides(manifest, game_dir, report, force=force)

        save_record(instance_dir, record_from_manifest(manifest))
        report.cleaned = self.cleanup_extra_files(instance_dir, manifest, state)
        report.downloaded_files = list(state.downloaded_files)

        self._stage(100, "Installation completed", "complete")
        logger.info("Install of %s finished: %s", manifest.instance.name, report.summary)
        return report

    def _install_extra_mods(
        self, manifest: PackManifest, mods_dir: Path, state: ResolutionState, report: InstallReport
    ) -> None:
        total = len(manifest.extra_mods)
        if not total:
            return
        platform = self.platform_for(manifest)
        existing = scan_installed_mod_names(mods_dir)

        for index, mod in enumerate(manifest.extra_mods):
            self._stage(
                30 + percent_of(index, total) * 40 // 100,
                f"Installing extra mod: {mod.display}",
                "extra_mods",
                index + 1,
                total,
            )
            if is_probably_installed(mod.name, existing):
                logger.info("Skipping %s: a matching mod is already installed", mod.name)
                report.mods_skipped.append(mod.name)
                continue

            report.mods_attempted += 1
            try:
                result = self.resolver.resolve_and_install(mod, platform, mods_dir, state=state)
            except PackdockError as e:
                logger.warning("Failed to install extra mod %s: %s", mod.display, e)
                report.mods_failed.append(mod.name)
                continue

            if result.skipped:
                report.mods_skipped.append(mod.name)
                continue
            report.mods_installed.append(mod.name)
            for failure in result.failures:
                logger.warning("Dependency of %s not installed: %s", mod.name, failure)

    def _apply_overrides(self, manifest: PackManifest, game_dir: Path, report: InstallReport, *, force: bool) -> None:
        total = len(manifest.overrides)
        for index, override in enumerate(manifest.overrides):
            self._stage(
                70 + percent_of(index, total) * 25 // 100,
                f"Applying override: {override.name}",
                "overrides",
                index + 1,
                total,
            )
            try:
                status = download_and_extract(self.fetcher, self.archives, override.url, game_dir, force=force)
            except PackdockError as e:
                logger.warning("Failed to apply override %s: %s", override.name, e)
                report.overrides_failed.append(override.name)
                continue
            logger.info("Override %s: %s", override.name, status)
            report.overrides_applied.append(override.name)

    def cleanup_extra_files(self, instance_dir: Path, manifest: PackManifest, state: ResolutionState) -> int:
        # Files are never removed; only the snapshot of what this run expected is kept.
        try:
            write_json_atomic(instance_dir / CURRENT_MANIFEST_FILENAME, manifest.as_json())
            write_json_atomic(instance_dir / DOWNLOADED_FILES_FILENAME, list(state.downloaded_files))
        except OSError as e:
            logger.warning("Failed to write install snapshot in %s: %s", instance_dir, e)
        return 0
