from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from .client import PackdockError
from .paths import write_json_atomic
from .registry import ComponentSpec

logger = logging.getLogger(__name__)

RECORD_FILENAME = ".current_version.json"


@dataclass(frozen=True)
class InstanceSpec:
    name: str
    version: str
    minecraft_version: str | None = None
    loader: str | None = None


@dataclass(frozen=True)
class OverrideSpec:
    name: str
    url: str


@dataclass(frozen=True)
class PackManifest:
    instance: InstanceSpec
    extra_mods: tuple[ComponentSpec, ...] = ()
    overrides: tuple[OverrideSpec, ...] = ()

    def as_json(self) -> dict[str, Any]:
        return {
            "instance": {
                "name": self.instance.name,
                "version": self.instance.version,
                "minecraft_version": self.instance.minecraft_version,
                "loader": self.instance.loader,
            },
            "extra_mods": [{"name": m.name, "version": m.version} for m in self.extra_mods],
            "overrides": [{"name": o.name, "url": o.url} for o in self.overrides],
        }


@dataclass(frozen=True)
class InstalledVersionRecord:
    instance_name: str
    instance_version: str
    extra_mods: tuple[ComponentSpec, ...] = ()
    overrides: tuple[OverrideSpec, ...] = ()
    last_updated: str = ""

    def as_json(self) -> dict[str, Any]:
        return {
            "instance_name": self.instance_name,
            "instance_version": self.instance_version,
            "extra_mods": [{"name": m.name, "version": m.version} for m in self.extra_mods],
            "overrides": [{"name": o.name, "url": o.url} for o in self.overrides],
            "last_updated": self.last_updated,
        }


class UpdateAction(str, Enum):
    FRESH_INSTALL = "fresh_install"
    NO_UPDATE = "no_update"
    UPDATE = "update"


@dataclass(frozen=True)
class UpdatePlan:
    action: UpdateAction
    reasons: tuple[str, ...] = ()
    note: str | None = None

    @property
    def message(self) -> str:
        if self.action is UpdateAction.FRESH_INSTALL:
            return "Instance not found - needs to be created"
        if self.action is UpdateAction.NO_UPDATE:
            if self.note:
                return f"No updates available - {self.note}"
            return "No updates available - everything is up to date"
        return f"Updates available: {', '.join(self.reasons)}"


def _req_str(obj: dict[str, Any], key: str, where: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value.strip():
        raise PackdockError(f"Invalid pack manifest: {where}.{key} must be a non-empty string")
    return value.strip()


def _opt_str(value: Any) -> str | None:
    return value.strip() if isinstance(value, str) and value.strip() else None


def _parse_mods(raw: Any) -> tuple[ComponentSpec, ...]:
    if not isinstance(raw, list):
        return ()
    mods: list[ComponentSpec] = []
    for item in raw:
        if isinstance(item, dict) and (name := _opt_str(item.get("name"))):
            mods.append(ComponentSpec(name=name, version=_opt_str(item.get("version"))))
    return tuple(mods)


def _parse_overrides(raw: Any) -> tuple[OverrideSpec, ...]:
    if not isinstance(raw, list):
        return ()
    out: list[OverrideSpec] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        name = _opt_str(item.get("name"))
        url = _opt_str(item.get("url"))
        if name and url:
            out.append(OverrideSpec(name=name, url=url))
    return tuple(out)


def parse_pack_manifest(raw: Any) -> PackManifest:
    if not isinstance(raw, dict) or not isinstance(raw.get("instance"), dict):
        raise PackdockError("Invalid pack manifest: missing 'instance' object")
    inst = raw["instance"]
    return PackManifest(
        instance=InstanceSpec(
            name=_req_str(inst, "name", "instance"),
            version=_req_str(inst, "version", "instance"),
            minecraft_version=_opt_str(inst.get("minecraft_version")),
            loader=_opt_str(inst.get("loader")),
        ),
        extra_mods=_parse_mods(raw.get("extra_mods")),
        overrides=_parse_overrides(raw.get("overrides")),
    )


def record_from_manifest(manifest: PackManifest, *, now: datetime | None = None) -> InstalledVersionRecord:
    ts = (now or datetime.now(timezone.utc)).isoformat()
    return InstalledVersionRecord(
        instance_name=manifest.instance.name,
        instance_version=manifest.instance.version,
        extra_mods=manifest.extra_mods,
        overrides=manifest.overrides,
        last_updated=ts,
    )


def load_record(instance_dir: Path) -> InstalledVersionRecord | None:
    path = instance_dir / RECORD_FILENAME
    if not path.exists():
        return None
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable version record %s: %s", path, e)
        return None
    if not isinstance(raw, dict):
        return None
    last_updated = raw.get("last_updated")
    return InstalledVersionRecord(
        instance_name=raw["instance_name"] if isinstance(raw.get("instance_name"), str) else "",
        instance_version=raw["instance_version"] if isinstance(raw.get("instance_version"), str) else "",
        extra_mods=_parse_mods(raw.get("extra_mods")),
        overrides=_parse_overrides(raw.get("overrides")),
        last_updated=last_updated if isinstance(last_updated, str) else "",
    )


def save_record(instance_dir: Path, record: InstalledVersionRecord) -> Path:
    path = instance_dir / RECORD_FILENAME
    write_json_atomic(path, record.as_json())
    return path


def compare_record(manifest: PackManifest, record: InstalledVersionRecord) -> list[str]:
    reasons: list[str] = []
    if record.instance_name != manifest.instance.name:
        reasons.append(f"Instance name changed: {record.instance_name} -> {manifest.instance.name}")
    if record.instance_version != manifest.instance.version:
        reasons.append(f"Instance version changed: {record.instance_version} -> {manifest.instance.version}")
    if len(record.extra_mods) != len(manifest.extra_mods):
        reasons.append(f"Extra mods count changed: {len(record.extra_mods)} -> {len(manifest.extra_mods)}")

    installed = {(m.name, m.version) for m in record.extra_mods}
    for mod in manifest.extra_mods:
        if (mod.name, mod.version) not in installed:
            reasons.append(f"Mod update needed: {mod.display}")
    return reasons


def _has_content(path: Path) -> bool:
    try:
        return any(True for _ in path.iterdir())
    except OSError:
        return False


def looks_populated(instance_dir: Path) -> bool:
    game_dir = instance_dir / ".minecraft"
    return _has_content(game_dir / "mods") or _has_content(game_dir / "config")


def plan(manifest: PackManifest, instance_dir: Path) -> UpdatePlan:
    if not instance_dir.exists():
        return UpdatePlan(UpdateAction.FRESH_INSTALL)

    record = load_record(instance_dir)
    if record is None:
        # Installs that predate record keeping are assumed current when they already have content.
        if looks_populated(instance_dir):
            return UpdatePlan(UpdateAction.NO_UPDATE, note="files already exist (no version tracking)")
        return UpdatePlan(UpdateAction.UPDATE, reasons=("no version tracking found",))

    reasons = compare_record(manifest, record)
    if not reasons:
        return UpdatePlan(UpdateAction.NO_UPDATE)
    return UpdatePlan(UpdateAction.UPDATE, reasons=tuple(reasons))
