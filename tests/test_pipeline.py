import hashlib
import io
import json
import tempfile
import unittest
import zipfile
from pathlib import Path

import httpx

from packdock.client import PackdockClient, PackdockError
from packdock.config import Config
from packdock.pipeline import CURRENT_MANIFEST_FILENAME, DOWNLOADED_FILES_FILENAME, PackInstaller
from packdock.planner import RECORD_FILENAME, InstanceSpec, PackManifest, UpdateAction
from packdock.registry import DependencyKind, DependencyRef, ResolvedVersion, VersionFile

MANIFEST_URL = "https://example.com/pack.json"
PACK_URL = "https://cdn.example.com/pack-1.0.0.mrpack"
CONFIG_URL = "https://example.com/config.zip"
BUNDLED_JAR = b"bundled"


def _zip(entries: dict[str, str | bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buf.getvalue()


def _manifest(extra_mods: list[dict]) -> dict:
    return {
        "instance": {"name": "Test Pack", "version": "1.0.0", "minecraft_version": "1.21.1", "loader": "fabric"},
        "extra_mods": extra_mods,
        "overrides": [{"name": "config", "url": CONFIG_URL}],
    }


def _version(project: str, vid: str, filename: str, *, requires: tuple[str, ...] = ()) -> ResolvedVersion:
    return ResolvedVersion(
        id=vid,
        project_id=project,
        display_name=project,
        version_label=vid,
        game_versions=("1.21.1",),
        loaders=("fabric",),
        files=(VersionFile(url=f"https://cdn.example.com/{filename}", filename=filename, primary=True),),
        dependencies=tuple(DependencyRef(kind=DependencyKind.REQUIRED, project_id=p) for p in requires),
    )


class FakeRepo:
    def __init__(self) -> None:
        self.versions = {
            "Test Pack": [_version("PACK", "1.0.0", "pack-1.0.0.mrpack")],
            "jei": [_version("JEI", "12.3.0.0", "jei-12.3.0.0.jar", requires=("FAPI",))],
            "JEI": [_version("JEI", "12.3.0.0", "jei-12.3.0.0.jar", requires=("FAPI",))],
            "FAPI": [_version("FAPI", "0.91.0", "fabric-api-0.91.0+1.21.1.jar")],
            "modmenu": [_version("MM", "8.0.0", "modmenu-8.0.0+1.21.1.jar")],
        }
        self.downloads: list[str] = []

    def get_version(self, project: str, version: str) -> ResolvedVersion:
        for v in self.versions.get(project, []):
            if version in (v.id, v.version_label):
                return v
        raise PackdockError(f"Project or version not found: {project}@{version}")

    def list_versions(self, project: str) -> list[ResolvedVersion]:
        if project not in self.versions:
            raise PackdockError(f"Project or version not found: {project}")
        return list(self.versions[project])

    def download(self, file: VersionFile) -> bytes:
        self.downloads.append(file.filename)
        return file.filename.encode("utf-8")


class _Server:
    def __init__(self, manifest: dict, config_zip: bytes | None = None) -> None:
        self.manifest = manifest
        self.pack = _zip(
            {
                "modrinth.index.json": json.dumps(
                    {
                        "files": [
                            {
                                "path": "mods/bundled.jar",
                                "downloads": ["https://cdn.example.com/bundled.jar"],
                                "hashes": {"sha1": hashlib.sha1(BUNDLED_JAR).hexdigest()},
                            }
                        ]
                    }
                ),
                "overrides/config/pack.cfg": "pack",
            }
        )
        if config_zip is None:
            config_zip = _zip({"config/jei.cfg": "jei", "manifest.json": json.dumps({"notes": "tuned"})})
        self.config_zip = config_zip

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        lm = {"last-modified": "Tue, 01 Oct 2024 00:00:00 GMT"}
        if url == MANIFEST_URL:
            return httpx.Response(200, json=self.manifest)
        if url == PACK_URL:
            return httpx.Response(200, headers=lm, content=self.pack)
        if url == CONFIG_URL:
            return httpx.Response(200, headers=lm, content=self.config_zip)
        if url == "https://cdn.example.com/bundled.jar":
            return httpx.Response(200, content=BUNDLED_JAR)
        return httpx.Response(404, text="missing")


class TestPackInstaller(unittest.TestCase):
    def _installer(
        self, root: Path, manifest: dict, events: list | None = None, config_zip: bytes | None = None
    ) -> tuple[PackInstaller, FakeRepo]:
        server = _Server(manifest, config_zip)
        client = PackdockClient(transport=httpx.MockTransport(server.handler))
        self.addCleanup(client.close)
        cfg = Config(instance_base=str(root), cache_dir=str(root / "cache"))
        repo = FakeRepo()
        listener = events.append if events is not None else None
        return PackInstaller(cfg, client, repo=repo, listener=listener), repo

    def test_full_install_then_no_update(self) -> None:
        events: list = []
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            mods = root / "Instance" / ".minecraft" / "mods"
            mods.mkdir(parents=True)
            (mods / "modmenu-7.0.0+1.21.jar").write_bytes(b"old")

            installer, repo = self._installer(
                root, _manifest([{"name": "jei", "version": "12.3.0.0"}, {"name": "modmenu"}]), events
            )
            report = installer.install_from_manifest(MANIFEST_URL)
            instance = root / "Instance"

            self.assertEqual(report.summary["attempted"], 1)
            self.assertEqual(report.summary["skipped"], 1)
            self.assertEqual(report.summary["downloaded"], 1)
            self.assertEqual(report.summary["failed"], 0)
            self.assertEqual(report.mods_skipped, ["modmenu"])
            self.assertEqual(repo.downloads, ["jei-12.3.0.0.jar", "fabric-api-0.91.0+1.21.1.jar"])
            self.assertTrue((mods / "bundled.jar").exists())
            self.assertTrue((mods / "jei-12.3.0.0.jar").exists())
            self.assertTrue((instance / ".minecraft" / "config" / "pack.cfg").exists())
            self.assertEqual((instance / ".minecraft" / "config" / "jei.cfg").read_text(encoding="utf-8"), "jei")
            self.assertTrue((instance / "instance.cfg").exists())
            self.assertTrue((instance / "mmc-pack.json").exists())
            self.assertTrue((instance / RECORD_FILENAME).exists())
            self.assertEqual(
                json.loads((instance / DOWNLOADED_FILES_FILENAME).read_text(encoding="utf-8")),
                ["bundled.jar", "jei-12.3.0.0.jar", "fabric-api-0.91.0+1.21.1.jar"],
            )
            self.assertTrue((instance / CURRENT_MANIFEST_FILENAME).exists())
            self.assertEqual(report.cleaned, 0)

            self.assertIs(installer.check_updates(MANIFEST_URL).action, UpdateAction.NO_UPDATE)

        stages = [e.stage for e in events if e.stage is not None]
        for stage in ("modpack", "extra_mods", "overrides", "complete"):
            self.assertIn(stage, stages)
        self.assertEqual(stages[-1], "complete")

    def test_extra_mod_failures_do_not_abort(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            installer, _ = self._installer(root, _manifest([{"name": "ghost"}, {"name": "jei"}]))
            report = installer.install_from_manifest(MANIFEST_URL)
            record_exists = (root / "Instance" / RECORD_FILENAME).exists()

        self.assertEqual(report.mods_failed, ["ghost"])
        self.assertEqual(report.mods_installed, ["jei"])
        self.assertTrue(record_exists)

    def test_corrupt_override_is_counted_and_record_still_saved(self) -> None:
        data = bytearray(_zip({"config/jei.cfg": "jei settings " * 200}))
        extra_len = int.from_bytes(data[28:30], "little")
        start = 30 + len("config/jei.cfg") + extra_len
        data[start : start + 8] = b"\xff" * 8
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            installer, _ = self._installer(root, _manifest([{"name": "jei"}]), config_zip=bytes(data))
            report = installer.install_from_manifest(MANIFEST_URL)
            record_exists = (root / "Instance" / RECORD_FILENAME).exists()

        self.assertEqual(report.overrides_failed, ["config"])
        self.assertEqual(report.overrides_applied, [])
        self.assertEqual(report.summary["overrides_failed"], 1)
        self.assertEqual(report.mods_installed, ["jei"])
        self.assertTrue(record_exists)

    def test_missing_bundle_is_fatal(self) -> None:
        manifest = _manifest([])
        manifest["instance"]["version"] = "9.9.9"
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            installer, _ = self._installer(root, manifest)
            with self.assertRaises(PackdockError):
                installer.install_from_manifest(MANIFEST_URL)
            self.assertFalse((root / "Instance" / RECORD_FILENAME).exists())

    def test_missing_instance_base_is_an_error(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td) / "nope"
            installer, _ = self._installer(root, _manifest([]))
            with self.assertRaises(PackdockError):
                installer.install_from_manifest(MANIFEST_URL)

    def test_check_updates_on_empty_base_is_fresh_install(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            installer, _ = self._installer(Path(td), _manifest([]))
            result = installer.check_updates(MANIFEST_URL)
        self.assertIs(result.action, UpdateAction.FRESH_INSTALL)

    def test_platform_falls_back_to_config(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            installer, _ = self._installer(Path(td), _manifest([]))
            manifest = installer.fetch_manifest(MANIFEST_URL)
        self.assertEqual(installer.platform_for(manifest).game_version, "1.21.1")
        platform = installer.platform_for(PackManifest(instance=InstanceSpec(name="P", version="1")))
        self.assertEqual((platform.game_version, platform.loader), ("1.21.1", "fabric"))


if __name__ == "__main__":
    unittest.main()
