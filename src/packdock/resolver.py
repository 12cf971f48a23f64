from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .client import PackdockError
from .events import DOWNLOAD_PROGRESS, ProgressEvent, ProgressListener, emit
from .paths import write_bytes_atomic
from .registry import ComponentSpec, DependencyRef, Platform, ResolvedVersion, VersionFile, VersionRepository

logger = logging.getLogger(__name__)


class NoCompatibleVersionError(PackdockError):
    pass


@dataclass
class ResolutionState:
    """
    Per-session bookkeeping shared by every resolution of one install run.

    visited holds project ids that were claimed (downloaded, being downloaded, or failed) and stops both
    duplicate downloads and dependency cycles. downloaded_files lists artifact filenames in write order.
    Not thread-safe: resolutions sharing a state must run one at a time.
    """

    visited: set[str] = field(default_factory=set)
    downloaded_files: list[str] = field(default_factory=list)

    def claim(self, project_id: str) -> bool:
        if project_id in self.visited:
            return False
        self.visited.add(project_id)
        return True

    def record_file(self, filename: str) -> None:
        if filename not in self.downloaded_files:
            self.downloaded_files.append(filename)


@dataclass(frozen=True)
class ResolutionResult:
    root: ResolvedVersion
    installed: tuple[str, ...]
    failures: tuple[str, ...]
    skipped: bool = False


def select_compatible_version(project: str, versions: list[ResolvedVersion], platform: Platform) -> ResolvedVersion:
    for version in versions:
        if version.supports(platform):
            return version
    raise NoCompatibleVersionError(
        f"No compatible version found for {project} with game version {platform.game_version} "
        f"and loader {platform.loader}"
    )


def primary_file(version: ResolvedVersion, *, suffix: str | None = None) -> VersionFile:
    for f in version.files:
        if f.primary and (suffix is None or f.filename.endswith(suffix)):
            return f
    kind = f"primary {suffix} file" if suffix else "primary file"
    raise PackdockError(f"No {kind} found for {version.display_name} {version.version_label}")


class DependencyResolver:
    def __init__(self, repo: VersionRepository, *, listener: ProgressListener | None = None) -> None:
        self.repo = repo
        self.listener = listener

    def select(self, spec: ComponentSpec, platform: Platform) -> ResolvedVersion:
        if spec.version:
            return self.repo.get_version(spec.name, spec.version)
        return select_compatible_version(spec.name, self.repo.list_versions(spec.name), platform)

    def install_file(self, version: ResolvedVersion, target_dir: Path, state: ResolutionState) -> str:
        artifact = primary_file(version)
        filename = Path(artifact.filename).name
        if filename != artifact.filename or filename in ("", ".", ".."):
            raise PackdockError(f"Refusing unsafe artifact filename {artifact.filename!r}")

        data = self.repo.download(artifact)
        try:
            write_bytes_atomic(target_dir / filename, data)
        except OSError as e:
            raise PackdockError(f"Failed to write {target_dir / filename}: {e}") from e
        state.record_file(filename)
        logger.info("Downloaded %s (%s %s)", filename, version.display_name, version.version_label)
        return filename

    def resolve_and_install(
        self,
        spec: ComponentSpec,
        platform: Platform,
        target_dir: Path,
        *,
        state: ResolutionState | None = None,
    ) -> ResolutionResult:
        state = state if state is not None else ResolutionState()
        root = self.select(spec, platform)

        if not state.claim(root.project_id):
            logger.info("%s already resolved in this session", spec.name)
            return ResolutionResult(root=root, installed=(), failures=(), skipped=True)

        installed = [self.install_file(root, target_dir, state)]
        failures: list[str] = []

        # Depth-first worklist; every project id is claimed before it is resolved so cycles terminate.
        pending: list[DependencyRef] = list(reversed(root.dependencies))
        while pending:
            dep = pending.pop()
            if not dep.required:
                logger.debug("Skipping %s dependency %s", dep.kind, dep.project_id)
                continue
            if dep.project_id is None:
                logger.debug("Skipping required dependency without project id (%s)", dep.file_name)
                continue
            if not state.claim(dep.project_id):
                continue

            try:
                version = self.select(ComponentSpec(name=dep.project_id), platform)
                installed.append(self.install_file(version, target_dir, state))
            except PackdockError as e:
                logger.warning("Failed to install dependency %s of %s: %s", dep.project_id, spec.name, e)
                failures.append(f"{dep.project_id}: {e}")
                continue

            emit(
                self.listener,
                ProgressEvent(DOWNLOAD_PROGRESS, 100, 1, 1, f"Dependency: {version.display_name}", "dependencies"),
            )
            pending.extend(reversed(version.dependencies))

        return ResolutionResult(root=root, installed=tuple(installed), failures=tuple(failures))
