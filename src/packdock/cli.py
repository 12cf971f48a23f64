from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any

from ._version import __version__
from .archive import ArchiveInstaller, download_and_extract
from .client import PackdockClient, PackdockError, PackdockHTTPError
from .config import Config, apply_env, config_path, load_config, save_config
from .events import ProgressEvent, ProgressListener
from .fetcher import CachedFetcher
from .pipeline import PackInstaller
from .registry import ComponentSpec, ModrinthRepository, Platform
from .resolver import DependencyResolver


def _print_table(rows: list[list[str]]) -> None:
    if not rows:
        return
    widths = [0] * len(rows[0])
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))
    for r in rows:
        line = "  ".join(c.ljust(widths[i]) for i, c in enumerate(r))
        print(line.rstrip())


def _format_http_error(e: PackdockHTTPError) -> str:
    body = e.body.strip()
    if len(body) > 200:
        body = body[:200] + "..."
    return f"HTTP {e.status_code}: {body}" if body else f"HTTP {e.status_code}"


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")


def _merge_cfg(base: Config, args: argparse.Namespace) -> Config:
    # Env overrides config; CLI overrides both.
    cfg = apply_env(base)
    changes: dict[str, Any] = {}
    for field in ("registry_url", "cache_dir", "timeout_s", "manifest_url", "instance_base"):
        value = getattr(args, field, None)
        if value is not None:
            changes[field] = value
    return replace(cfg, **changes) if changes else cfg


def _runtime(args: argparse.Namespace) -> tuple[Config, PackdockClient]:
    cfg = _merge_cfg(load_config(), args)
    return cfg, PackdockClient(timeout_s=cfg.timeout_s)


def _progress_printer(enabled: bool) -> ProgressListener | None:
    if not enabled:
        return None

    def _print(event: ProgressEvent) -> None:
        print(json.dumps(event.as_dict(), sort_keys=True), file=sys.stderr, flush=True)

    return _print


def _require_manifest_url(cfg: Config) -> str:
    if not cfg.manifest_url:
        raise PackdockError("Missing manifest_url. Set it via --manifest-url, PACKDOCK_MANIFEST_URL or config.")
    return cfg.manifest_url


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="packdock",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Modpack instance installer and updater.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              PACKDOCK_REGISTRY_URL, PACKDOCK_MANIFEST_URL, PACKDOCK_INSTANCE_BASE,
              PACKDOCK_CACHE_DIR, PACKDOCK_TIMEOUT_S, PACKDOCK_CONFIG_PATH
            """
        ),
    )
    p.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    p.add_argument("--registry-url", help="Version registry API base URL")
    p.add_argument("--cache-dir", help="Download cache directory")
    p.add_argument("--timeout-s", type=float, help="HTTP timeout in seconds")
    p.add_argument("--version", action="version", version=f"packdock {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # config
    cfg = sub.add_parser("config", help="Manage local config")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print config path")
    cfg_sub.add_parser("show", help="Show config")

    cfg_set = cfg_sub.add_parser("set", help="Set config fields")
    cfg_set.add_argument("--registry-url")
    cfg_set.add_argument("--manifest-url")
    cfg_set.add_argument("--instance-base", help="Directory holding launcher instances")
    cfg_set.add_argument("--instance-folder", help="Instance folder name under the base")
    cfg_set.add_argument("--cache-dir")
    cfg_set.add_argument("--timeout-s", type=float)
    cfg_set.add_argument("--game-version", help="Default game version for extra mods")
    cfg_set.add_argument("--loader", help="Default mod loader for extra mods")

    # check
    check = sub.add_parser("check", help="Compare the installed instance against the pack manifest")
    check.add_argument("--manifest-url")
    check.add_argument("--instance-base")
    check.add_argument("--json", action="store_true", help="Print raw JSON")

    # install
    install = sub.add_parser("install", help="Install or update the instance from the pack manifest")
    install.add_argument("--manifest-url")
    install.add_argument("--instance-base")
    install.add_argument("--force", action="store_true", help="Re-download and re-extract everything")
    install.add_argument("--json", action="store_true", help="Print raw JSON")
    install.add_argument("--progress", action="store_true", help="Print progress events as JSON lines on stderr")

    # fetch
    fetch = sub.add_parser("fetch", help="Download a zip archive (cached) and extract it into a directory")
    fetch.add_argument("url")
    fetch.add_argument("dest", help="Directory to extract into")
    fetch.add_argument("--force", action="store_true", help="Ignore cache and install marker")
    fetch.add_argument("--progress", action="store_true", help="Print progress events as JSON lines on stderr")

    # check-url
    check_url = sub.add_parser("check-url", help="Check whether a cached URL has a newer version")
    check_url.add_argument("url")

    # mod
    mod = sub.add_parser("mod", help="Install one mod and its required dependencies")
    mod.add_argument("name", help="Project slug or id")
    mod.add_argument("--version", dest="mod_version", help="Exact version id or number")
    mod.add_argument("--game-version")
    mod.add_argument("--loader")
    mod.add_argument("--mods-dir", required=True)

    return p


def cmd_config(args: argparse.Namespace) -> int:
    if args.subcmd == "path":
        print(str(config_path()))
        return 0

    if args.subcmd == "show":
        cfg = load_config()
        print(json.dumps(asdict(cfg), indent=2, sort_keys=True))
        return 0

    if args.subcmd == "set":
        cfg = load_config()
        changes: dict[str, Any] = {}
        for field in (
            "registry_url",
            "manifest_url",
            "instance_base",
            "instance_folder",
            "cache_dir",
            "timeout_s",
            "game_version",
            "loader",
        ):
            value = getattr(args, field, None)
            if value is not None:
                changes[field] = value
        path = save_config(replace(cfg, **changes))
        print(f"Saved: {path}")
        return 0

    raise AssertionError("unreachable")


def cmd_check(args: argparse.Namespace) -> int:
    cfg, client = _runtime(args)
    try:
        result = PackInstaller(cfg, client).check_updates(_require_manifest_url(cfg))
    finally:
        client.close()

    if args.json:
        payload = {"action": result.action.value, "reasons": list(result.reasons), "note": result.note}
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0

    print(result.message)
    return 0


def cmd_install(args: argparse.Namespace) -> int:
    cfg, client = _runtime(args)
    try:
        installer = PackInstaller(cfg, client, listener=_progress_printer(args.progress))
        report = installer.install_from_manifest(_require_manifest_url(cfg), force=args.force)
    finally:
        client.close()

    if args.json:
        print(json.dumps(report.as_json(), indent=2, sort_keys=True))
        return 0

    print(f"instance: {report.instance_dir}")
    if report.bundle is not None:
        print(
            f"modpack: {report.bundle.version.display_name} {report.bundle.version.version_label} "
            f"({report.bundle.files_downloaded}/{report.bundle.files_total} files)"
        )
    summary = report.summary
    _print_table([["ACTION", "COUNT"]] + [[k, str(v)] for k, v in summary.items()])
    for name in report.mods_installed:
        print(f"installed: {name}")
    for name in report.mods_skipped:
        print(f"skipped: {name}")
    for name in report.mods_failed:
        print(f"failed: {name}")
    for name in report.overrides_failed:
        print(f"override failed: {name}")
    return 0


def cmd_fetch(args: argparse.Namespace) -> int:
    cfg, client = _runtime(args)
    listener = _progress_printer(args.progress)
    try:
        fetcher = CachedFetcher(client=client, cache_dir=cfg.resolved_cache_dir(), listener=listener)
        status = download_and_extract(
            fetcher, ArchiveInstaller(listener=listener), args.url, Path(args.dest).expanduser(), force=args.force
        )
    finally:
        client.close()
    print(status)
    return 0


def cmd_check_url(args: argparse.Namespace) -> int:
    cfg, client = _runtime(args)
    try:
        result = CachedFetcher(client=client, cache_dir=cfg.resolved_cache_dir()).check_for_updates(args.url)
    finally:
        client.close()
    print(result.message)
    return 0


def cmd_mod(args: argparse.Namespace) -> int:
    cfg, client = _runtime(args)
    mods_dir = Path(args.mods_dir).expanduser()
    platform = Platform(game_version=args.game_version or cfg.game_version, loader=args.loader or cfg.loader)
    try:
        mods_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise PackdockError(f"Failed to create mods directory {mods_dir}: {e}") from e
    try:
        resolver = DependencyResolver(ModrinthRepository(client, base_url=cfg.registry_url))
        result = resolver.resolve_and_install(ComponentSpec(args.name, args.mod_version), platform, mods_dir)
    finally:
        client.close()

    print(f"resolved: {result.root.display_name} {result.root.version_label}")
    for filename in result.installed:
        print(f"installed: {filename}")
    for failure in result.failures:
        print(f"warning: dependency not installed: {failure}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    try:
        if args.cmd == "config":
            return cmd_config(args)
        if args.cmd == "check":
            return cmd_check(args)
        if args.cmd == "install":
            return cmd_install(args)
        if args.cmd == "fetch":
            return cmd_fetch(args)
        if args.cmd == "check-url":
            return cmd_check_url(args)
        if args.cmd == "mod":
            return cmd_mod(args)
        raise AssertionError("unreachable")
    except PackdockHTTPError as e:
        print(f"error: {_format_http_error(e)}", file=sys.stderr)
        return 1
    except PackdockError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
