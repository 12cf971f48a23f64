from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol
from urllib.parse import quote

from .client import PackdockClient, PackdockError, PackdockHTTPError
from .config import DEFAULT_REGISTRY_URL


class DependencyKind(str, Enum):
    REQUIRED = "required"
    OPTIONAL = "optional"
    INCOMPATIBLE = "incompatible"
    EMBEDDED = "embedded"


@dataclass(frozen=True)
class ComponentSpec:
    name: str
    version: str | None = None

    @property
    def display(self) -> str:
        return f"{self.name} v{self.version}" if self.version else f"{self.name} (auto-detect)"


@dataclass(frozen=True)
class Platform:
    game_version: str
    loader: str


@dataclass(frozen=True)
class DependencyRef:
    kind: DependencyKind | str
    project_id: str | None = None
    version_id: str | None = None
    file_name: str | None = None

    @property
    def required(self) -> bool:
        return self.kind == DependencyKind.REQUIRED


@dataclass(frozen=True)
class VersionFile:
    url: str
    filename: str
    size: int = 0
    primary: bool = False
    hashes: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolvedVersion:
    id: str
    project_id: str
    display_name: str
    version_label: str
    game_versions: tuple[str, ...]
    loaders: tuple[str, ...]
    files: tuple[VersionFile, ...]
    dependencies: tuple[DependencyRef, ...] = ()

    def supports(self, platform: Platform) -> bool:
        return platform.game_version in self.game_versions and platform.loader in self.loaders


class VersionRepository(Protocol):
    def get_version(self, project: str, version: str) -> ResolvedVersion:
        ...

    def list_versions(self, project: str) -> list[ResolvedVersion]:
        ...

    def download(self, file: VersionFile) -> bytes:
        ...


def _str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _str_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(v for v in value if isinstance(v, str))


def _list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _parse_dependency(raw: Any) -> DependencyRef | None:
    if not isinstance(raw, dict):
        return None
    kind_raw = _str(raw.get("dependency_type"))
    if kind_raw is None:
        return None
    try:
        kind: DependencyKind | str = DependencyKind(kind_raw)
    except ValueError:
        # Unknown kinds are kept for display but never followed.
        kind = kind_raw
    return DependencyRef(
        kind=kind,
        project_id=_str(raw.get("project_id")),
        version_id=_str(raw.get("version_id")),
        file_name=_str(raw.get("file_name")),
    )


def _parse_file(raw: Any) -> VersionFile | None:
    if not isinstance(raw, dict):
        return None
    url = _str(raw.get("url"))
    filename = _str(raw.get("filename"))
    if url is None or filename is None:
        return None
    size = raw.get("size")
    hashes = raw.get("hashes")
    return VersionFile(
        url=url,
        filename=filename,
        size=size if isinstance(size, int) else 0,
        primary=raw.get("primary") is True,
        hashes={k: v for k, v in hashes.items() if isinstance(k, str) and isinstance(v, str)}
        if isinstance(hashes, dict)
        else {},
    )


def parse_version(obj: Any) -> ResolvedVersion | None:
    if not isinstance(obj, dict):
        return None
    version_id = _str(obj.get("id"))
    project_id = _str(obj.get("project_id"))
    if version_id is None or project_id is None:
        return None

    files = [f for f in (_parse_file(raw) for raw in _list(obj.get("files"))) if f is not None]
    deps = [d for d in (_parse_dependency(raw) for raw in _list(obj.get("dependencies"))) if d is not None]
    return ResolvedVersion(
        id=version_id,
        project_id=project_id,
        display_name=_str(obj.get("name")) or project_id,
        version_label=_str(obj.get("version_number")) or version_id,
        game_versions=_str_tuple(obj.get("game_versions")),
        loaders=_str_tuple(obj.get("loaders")),
        files=tuple(files),
        dependencies=tuple(deps),
    )


class ModrinthRepository:
    def __init__(self, client: PackdockClient, *, base_url: str = DEFAULT_REGISTRY_URL) -> None:
        self._client = client
        self.base_url = base_url.rstrip("/")
        self._list_cache: dict[str, list[ResolvedVersion]] = {}

    def _get_json(self, path: str, *, what: str) -> Any:
        try:
            return self._client.get_json(f"{self.base_url}{path}")
        except PackdockHTTPError as e:
            if e.status_code != 404:
                raise
            raise PackdockError(f"Project or version not found: {what}") from e

    def get_version(self, project: str, version: str) -> ResolvedVersion:
        path = f"/project/{quote(project, safe='')}/version/{quote(version, safe='')}"
        data = self._get_json(path, what=f"{project}@{version}")
        resolved = parse_version(data)
        if resolved is None:
            raise PackdockError(f"Malformed version record for {project}@{version}")
        return resolved

    def list_versions(self, project: str) -> list[ResolvedVersion]:
        if project in self._list_cache:
            return list(self._list_cache[project])

        data = self._get_json(f"/project/{quote(project, safe='')}/version", what=project)
        if not isinstance(data, list):
            raise PackdockError(f"Unexpected version list payload for {project}")
        # Registry order is kept; selection takes the first compatible entry.
        versions = [v for v in (parse_version(item) for item in data) if v is not None]
        self._list_cache[project] = list(versions)
        return versions

    def download(self, file: VersionFile) -> bytes:
        return self._client.get_bytes(file.url)
