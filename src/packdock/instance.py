from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .client import PackdockError
from .registry import ResolvedVersion

FABRIC_LOADER_VERSION = "0.16.14"
LWJGL_SUGGESTS = "3.3.3"


def ensure_instance(instance_base: Path, folder: str) -> Path:
    base = instance_base.expanduser()
    if not base.is_dir():
        raise PackdockError(f"Instance base path does not exist: {base}")
    instance_dir = base / folder
    try:
        (instance_dir / ".minecraft" / "mods").mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise PackdockError(f"Failed to create instance at {instance_dir}: {e}") from e
    return instance_dir


def instance_cfg(version: ResolvedVersion, *, display_name: str) -> str:
    lines = [
        "[General]",
        "ConfigVersion=1.2",
        "ManagedPack=true",
        f"iconKey=modrinth_{version.project_id}",
        f"ManagedPackID={version.project_id}",
        "ManagedPackType=modrinth",
        f"ManagedPackName={version.display_name}",
        f"ManagedPackVersionID={version.id}",
        f"ManagedPackVersionName={version.version_label}",
        f"name={display_name}",
        "InstanceType=OneSix",
    ]
    return "\n".join(lines) + "\n"


def mmc_pack(game_version: str, loader: str) -> dict[str, Any]:
    minecraft: dict[str, Any] = {
        "cachedName": "Minecraft",
        "cachedVersion": game_version,
        "important": True,
        "uid": "net.minecraft",
        "version": game_version,
    }
    components = [minecraft]
    if loader == "fabric":
        minecraft["cachedRequires"] = [{"suggests": LWJGL_SUGGESTS, "uid": "org.lwjgl3"}]
        components.append(
            {
                "cachedName": "Fabric Loader",
                "cachedRequires": [{"uid": "net.fabricmc.intermediary"}],
                "cachedVersion": FABRIC_LOADER_VERSION,
                "uid": "net.fabricmc.fabric-loader",
                "version": FABRIC_LOADER_VERSION,
            }
        )
    return {"components": components, "formatVersion": 1}


def write_instance_descriptor(instance_dir: Path, version: ResolvedVersion, *, display_name: str) -> None:
    if not version.game_versions:
        raise PackdockError(f"No game version found for {version.display_name}")
    if not version.loaders:
        raise PackdockError(f"No loader found for {version.display_name}")
    game_version = version.game_versions[0]
    loader = version.loaders[0]

    try:
        (instance_dir / "instance.cfg").write_text(instance_cfg(version, display_name=display_name), encoding="utf-8")
        (instance_dir / "mmc-pack.json").write_text(
            json.dumps(mmc_pack(game_version, loader), indent=4) + "\n", encoding="utf-8"
        )
    except OSError as e:
        raise PackdockError(f"Failed to write instance descriptor in {instance_dir}: {e}") from e
