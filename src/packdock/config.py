from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any

from platformdirs import user_cache_path, user_config_path

DEFAULT_REGISTRY_URL = "https://api.modrinth.com/v2"
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_INSTANCE_FOLDER = "Instance"
DEFAULT_GAME_VERSION = "1.21.1"
DEFAULT_LOADER = "fabric"

# Environment variable -> Config field.
ENV_OVERRIDES = {
    "PACKDOCK_REGISTRY_URL": "registry_url",
    "PACKDOCK_MANIFEST_URL": "manifest_url",
    "PACKDOCK_INSTANCE_BASE": "instance_base",
    "PACKDOCK_CACHE_DIR": "cache_dir",
    "PACKDOCK_TIMEOUT_S": "timeout_s",
}


@dataclass(frozen=True)
class Config:
    registry_url: str = DEFAULT_REGISTRY_URL
    manifest_url: str | None = None
    instance_base: str | None = None  # directory holding launcher instances
    instance_folder: str = DEFAULT_INSTANCE_FOLDER
    cache_dir: str | None = None  # defaults to the platform user cache dir
    timeout_s: float = DEFAULT_TIMEOUT_S
    game_version: str = DEFAULT_GAME_VERSION
    loader: str = DEFAULT_LOADER

    def resolved_cache_dir(self) -> Path:
        if self.cache_dir:
            return Path(self.cache_dir).expanduser()
        return user_cache_path("packdock")


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("PACKDOCK_CONFIG_PATH"):
        return Path(env).expanduser()
    return user_config_path("packdock") / "config.json"


def load_config(path_override: str | Path | None = None) -> Config:
    path = config_path(path_override)
    if not path.exists():
        return Config()

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        return Config()

    allowed = {f.name for f in Config.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered: dict[str, Any] = {k: v for k, v in raw.items() if k in allowed}
    return Config(**filtered)  # type: ignore[arg-type]


def save_config(cfg: Config, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)
    return path


def apply_env(cfg: Config, environ: dict[str, str] | None = None) -> Config:
    env = os.environ if environ is None else environ
    changes: dict[str, Any] = {}
    for var, field in ENV_OVERRIDES.items():
        value = env.get(var)
        if not value:
            continue
        if field == "timeout_s":
            try:
                changes[field] = float(value)
            except ValueError:
                continue
        else:
            changes[field] = value
    return replace(cfg, **changes) if changes else cfg
