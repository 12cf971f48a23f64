import io
import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from packdock.cli import _format_http_error, _merge_cfg, build_parser, main
from packdock.archive import ArchiveError
from packdock.client import PackdockError, PackdockHTTPError
from packdock.config import Config
from packdock.planner import UpdateAction, UpdatePlan
from packdock.resolver import ResolutionResult


class TestParser(unittest.TestCase):
    def test_global_flags_and_subcommand(self) -> None:
        args = build_parser().parse_args(["-vv", "--timeout-s", "5", "install", "--manifest-url", "https://x/p.json"])
        self.assertEqual(args.verbose, 2)
        self.assertEqual(args.timeout_s, 5.0)
        self.assertEqual(args.cmd, "install")
        self.assertEqual(args.manifest_url, "https://x/p.json")
        self.assertFalse(args.force)

    def test_mod_requires_mods_dir(self) -> None:
        with patch("sys.stderr", new=io.StringIO()):
            with self.assertRaises(SystemExit):
                build_parser().parse_args(["mod", "sodium"])

    def test_cli_overrides_config(self) -> None:
        args = build_parser().parse_args(["--registry-url", "https://mirror/v2", "check", "--instance-base", "/games"])
        with patch.dict(os.environ, {"PACKDOCK_REGISTRY_URL": "https://env/v2", "PACKDOCK_INSTANCE_BASE": ""}):
            cfg = _merge_cfg(Config(manifest_url="https://x/p.json"), args)
        self.assertEqual(cfg.registry_url, "https://mirror/v2")
        self.assertEqual(cfg.instance_base, "/games")
        self.assertEqual(cfg.manifest_url, "https://x/p.json")


class TestMain(unittest.TestCase):
    def test_check_prints_plan(self) -> None:
        plan = UpdatePlan(UpdateAction.UPDATE, reasons=("Instance version changed: 1.0 -> 2.0",))
        with (
            patch("packdock.cli.load_config", return_value=Config(manifest_url="https://x/p.json")),
            patch("packdock.cli.PackInstaller") as installer_cls,
            patch("sys.stdout", new=io.StringIO()) as out,
        ):
            installer_cls.return_value.check_updates.return_value = plan
            rc = main(["check", "--json"])

        self.assertEqual(rc, 0)
        installer_cls.return_value.check_updates.assert_called_once_with("https://x/p.json")
        payload = json.loads(out.getvalue())
        self.assertEqual(payload["action"], "update")
        self.assertEqual(payload["reasons"], ["Instance version changed: 1.0 -> 2.0"])

    def test_missing_manifest_url_is_an_error(self) -> None:
        with (
            patch.dict(os.environ, {"PACKDOCK_MANIFEST_URL": ""}),
            patch("packdock.cli.load_config", return_value=Config()),
            patch("sys.stderr", new=io.StringIO()) as err,
        ):
            rc = main(["check"])
        self.assertEqual(rc, 1)
        self.assertIn("error: Missing manifest_url", err.getvalue())

    def test_http_error_is_formatted(self) -> None:
        with (
            patch("packdock.cli.load_config", return_value=Config()),
            patch("packdock.cli.CachedFetcher") as fetcher_cls,
            patch("sys.stderr", new=io.StringIO()) as err,
        ):
            fetcher_cls.return_value.check_for_updates.side_effect = PackdockHTTPError(503, "down")
            rc = main(["check-url", "https://example.com/a.zip"])
        self.assertEqual(rc, 1)
        self.assertEqual(err.getvalue().strip(), "error: HTTP 503: down")

    def test_archive_errors_are_reported(self) -> None:
        with (
            patch("packdock.cli.load_config", return_value=Config()),
            patch("packdock.cli.download_and_extract", side_effect=ArchiveError("Failed to read zip archive x.zip")),
            patch("sys.stderr", new=io.StringIO()) as err,
        ):
            rc = main(["fetch", "https://example.com/x.zip", "out"])
        self.assertEqual(rc, 1)
        self.assertEqual(err.getvalue().strip(), "error: Failed to read zip archive x.zip")

    def test_format_http_error_truncates(self) -> None:
        self.assertEqual(_format_http_error(PackdockHTTPError(500, "")), "HTTP 500")
        self.assertTrue(_format_http_error(PackdockHTTPError(500, "x" * 300)).endswith("..."))

    def test_mod_installs_into_mods_dir(self) -> None:
        result = ResolutionResult(
            root=Mock(display_name="Sodium", version_label="0.5.8"),
            installed=("sodium.jar", "dep.jar"),
            failures=("gone: not found",),
        )
        with tempfile.TemporaryDirectory() as td:
            mods_dir = Path(td) / "mods"
            with (
                patch("packdock.cli.load_config", return_value=Config()),
                patch("packdock.cli.DependencyResolver") as resolver_cls,
                patch("sys.stdout", new=io.StringIO()) as out,
            ):
                resolver_cls.return_value.resolve_and_install.return_value = result
                rc = main(["mod", "sodium", "--game-version", "1.21", "--mods-dir", str(mods_dir)])
            self.assertTrue(mods_dir.is_dir())

        self.assertEqual(rc, 0)
        spec, platform, target = resolver_cls.return_value.resolve_and_install.call_args.args
        self.assertEqual((spec.name, spec.version), ("sodium", None))
        self.assertEqual((platform.game_version, platform.loader), ("1.21", "fabric"))
        self.assertEqual(target, mods_dir)
        self.assertIn("installed: dep.jar", out.getvalue())
        self.assertIn("warning: dependency not installed: gone: not found", out.getvalue())

    def test_resolver_errors_exit_nonzero(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with (
                patch("packdock.cli.load_config", return_value=Config()),
                patch("packdock.cli.DependencyResolver") as resolver_cls,
                patch("sys.stderr", new=io.StringIO()) as err,
            ):
                resolver_cls.return_value.resolve_and_install.side_effect = PackdockError("No compatible version")
                rc = main(["mod", "ghost", "--mods-dir", td])
        self.assertEqual(rc, 1)
        self.assertIn("error: No compatible version", err.getvalue())

    def test_config_set_and_show(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            with patch.dict(os.environ, {"PACKDOCK_CONFIG_PATH": str(path)}):
                with patch("sys.stdout", new=io.StringIO()) as out:
                    rc = main(["config", "set", "--instance-base", "/games", "--loader", "quilt"])
                self.assertEqual(rc, 0)
                self.assertIn(f"Saved: {path}", out.getvalue())

                with patch("sys.stdout", new=io.StringIO()) as out:
                    main(["config", "show"])
                shown = json.loads(out.getvalue())

        self.assertEqual(shown["instance_base"], "/games")
        self.assertEqual(shown["loader"], "quilt")
        self.assertEqual(shown["game_version"], "1.21.1")


if __name__ == "__main__":
    unittest.main()
