"""CLI for syncing a local vault with its remote replica."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any

from vaultsync.config import DEFAULT_CONTROL_DIR, Settings
from vaultsync.exceptions import SyncError
from vaultsync.filesystem.layout import atomic_write_text
from vaultsync.filesystem.watcher import WatchdogFileWatcher
from vaultsync.main import _configure_logging
from vaultsync.providers.registry import create_provider
from vaultsync.schemas.state import ConflictStrategy
from vaultsync.services.change_recorder import ChangeRecorder
from vaultsync.services.sync_diff import SyncStatus
from vaultsync.services.sync_service import SyncRunSummary, SyncService

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"
_PATH_KEYS = frozenset({"remote_dir", "google_credentials_file", "google_token_file"})
_CONFIG_KEYS = (
    "provider",
    "remote_dir",
    "vault_id",
    "google_credentials_file",
    "google_token_file",
    "google_app_folder",
    "default_conflict_strategy",
)


def config_path(vault_dir: Path) -> Path:
    return vault_dir / DEFAULT_CONTROL_DIR / CONFIG_FILE


def load_config(vault_dir: Path) -> dict[str, Any]:
    """Load the vault's saved CLI config, or an empty dict."""
    path = config_path(vault_dir)
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Corrupt config file {path}: {exc}") from exc
    return data if isinstance(data, dict) else {}


def save_config(vault_dir: Path, config: dict[str, Any]) -> None:
    """Save CLI config under the vault's control directory."""
    atomic_write_text(config_path(vault_dir), json.dumps(config, indent=2) + "\n")


def build_settings(vault_dir: Path, args: argparse.Namespace) -> Settings:
    """Settings from the environment, the saved config and command-line flags."""
    values: dict[str, Any] = dict(load_config(vault_dir))
    for key in _CONFIG_KEYS:
        value = getattr(args, key, None)
        if value is not None:
            values[key] = value
    values["vault_dir"] = vault_dir
    return Settings(**values)


def print_summary(summary: SyncRunSummary) -> None:
    print(
        f"Sync complete. pulled={summary.pulled} applied={summary.applied} "
        f"pushed={summary.pushed} resolved={summary.resolved} "
        f"conflicts={summary.conflicts_before}->{summary.conflicts_after}"
    )
    if summary.bootstrapped_files:
        print(f"  Restored {len(summary.bootstrapped_files)} file(s) from snapshot")
    for path in summary.blocked_paths:
        print(f"  CONFLICT: {path}")
    if summary.snapshot_id:
        print(f"  Snapshot: {summary.snapshot_id}")


def _cmd_init(vault_dir: Path, args: argparse.Namespace) -> None:
    config = load_config(vault_dir)
    for key in _CONFIG_KEYS:
        value = getattr(args, key, None)
        if value is not None:
            config[key] = str(Path(value).resolve()) if key in _PATH_KEYS else value
    settings = Settings(**{**config, "vault_dir": vault_dir})
    settings.validate_runtime()
    vault_dir.mkdir(parents=True, exist_ok=True)
    service = SyncService.from_settings(settings, create_provider(settings))
    service.open_vault(vault_dir).ensure_structure()
    save_config(vault_dir, config)
    print(f"Initialized sync config in {config_path(vault_dir)}")


def _cmd_status(service: SyncService, vault_dir: Path) -> None:
    diff = service.status(vault_dir)
    counts: dict[SyncStatus, int] = {}
    for comparison in diff.comparisons:
        counts[comparison.status] = counts.get(comparison.status, 0) + 1
    print("Sync Status:")
    for status in SyncStatus:
        print(f"  {status.value + ':':<16}{counts.get(status, 0)}")
    for comparison in diff.comparisons:
        if comparison.status in (SyncStatus.LOCAL_CHANGED, SyncStatus.LOCAL_ONLY):
            print(f"    + {comparison.path} (push)")
        elif comparison.status in (SyncStatus.REMOTE_CHANGED, SyncStatus.REMOTE_ONLY):
            print(f"    < {comparison.path} (pull)")
    for conflict in diff.conflicts:
        print(f"    ! {conflict.path} ({conflict.type})")


def _recorder(service: SyncService, settings: Settings, vault_dir: Path) -> ChangeRecorder:
    return ChangeRecorder(service.open_vault(vault_dir), settings.inline_text_max_bytes)


def _cmd_watch(
    service: SyncService, settings: Settings, vault_dir: Path, interval: float, strategy: str
) -> None:
    recorder = _recorder(service, settings, vault_dir)
    recorder.rescan()
    watcher = WatchdogFileWatcher(vault_dir)
    recorder.attach(watcher)
    watcher.start()
    print(f"Watching {vault_dir} (sync every {interval:g}s, Ctrl+C to stop)")
    try:
        while True:
            try:
                print_summary(service.sync_once(vault_dir, strategy))
            except SyncError as exc:
                logger.warning("Sync pass failed: %s", exc)
            time.sleep(interval)
    except KeyboardInterrupt:
        pass
    finally:
        watcher.stop()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="vaultsync",
        description="Sync a local vault with its remote replica",
    )
    parser.add_argument("--dir", "-d", default=".", help="Vault directory (default: current)")
    parser.add_argument("--provider", choices=["folder", "google-drive"], help="Remote provider")
    parser.add_argument("--remote-dir", dest="remote_dir", help="Remote folder (folder provider)")
    parser.add_argument("--vault-id", dest="vault_id", help="Vault name on the remote")
    parser.add_argument(
        "--google-credentials", dest="google_credentials_file", help="OAuth client JSON file"
    )
    parser.add_argument("--google-token", dest="google_token_file", help="OAuth token JSON file")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("init", help="Initialize sync configuration")
    subparsers.add_parser("status", help="Show what would change")
    subparsers.add_parser("scan", help="Record changes made while no watcher was running")
    sync_parser = subparsers.add_parser("sync", help="Run one bidirectional sync pass")
    sync_parser.add_argument(
        "--strategy",
        choices=[s.value for s in ConflictStrategy],
        help="Default conflict strategy for paths without a decision",
    )
    sync_parser.add_argument(
        "--no-scan", action="store_true", help="Do not rescan the vault before syncing"
    )
    watch_parser = subparsers.add_parser("watch", help="Watch the vault and sync periodically")
    watch_parser.add_argument("--interval", type=float, default=30.0, help="Seconds between passes")
    decide_parser = subparsers.add_parser("decide", help="Choose how a conflict is resolved")
    decide_parser.add_argument("path", help="Vault-relative path")
    decide_parser.add_argument("strategy", choices=[s.value for s in ConflictStrategy])
    subparsers.add_parser("snapshot", help="Publish a snapshot of the vault")

    args = parser.parse_args(argv)
    vault_dir = Path(args.dir).resolve()
    _configure_logging(args.debug)
    if not args.debug:
        logging.getLogger().setLevel(logging.WARNING)

    if args.command is None:
        parser.print_help()
        return

    try:
        if args.command == "init":
            _cmd_init(vault_dir, args)
            return

        settings = build_settings(vault_dir, args)
        settings.validate_runtime()
        service = SyncService.from_settings(settings, create_provider(settings))

        if args.command == "status":
            _cmd_status(service, vault_dir)
        elif args.command == "scan":
            recorded = _recorder(service, settings, vault_dir).rescan()
            print(f"Recorded {len(recorded)} change(s).")
        elif args.command == "sync":
            if not args.no_scan:
                _recorder(service, settings, vault_dir).rescan()
            strategy = args.strategy or settings.default_conflict_strategy
            print_summary(service.sync_once(vault_dir, strategy))
        elif args.command == "watch":
            strategy = settings.default_conflict_strategy
            _cmd_watch(service, settings, vault_dir, args.interval, strategy)
        elif args.command == "decide":
            vault = service.open_vault(vault_dir)
            vault.layout.resolve(args.path)
            decision = vault.decisions.set(args.path, args.strategy)
            print(f"Decision recorded: {decision.path} -> {decision.strategy}")
        elif args.command == "snapshot":
            manifest = service.publish_snapshot(vault_dir)
            print(f"Published snapshot {manifest.id} ({len(manifest.files)} files)")
    except (SyncError, ValueError) as exc:
        print(f"Error: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
