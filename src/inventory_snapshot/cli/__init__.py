"""CLI for inventory snapshot export, import and validation.

Usage:
    SNAPSHOT_PROFILE=local inventory-snapshot export
    inventory-snapshot connect local
    inventory-snapshot profiles
    inventory-snapshot export --full -o backups/inventory.zip
    inventory-snapshot import backups/inventory.zip --wipe --yes
    inventory-snapshot import backups/inventory.json --dry-run
    inventory-snapshot validate backups/inventory.zip

Commands:
    connect   - Test a profile's connection and make it the active profile
    profiles  - List available profiles
    export    - Write a JSON (or, with --full, zip) snapshot of the store
    import    - Restore a snapshot into the store
    validate  - Check a snapshot file without touching the store
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from inventory_snapshot.config.loader import load_config
from inventory_snapshot.config.models import SnapshotConfig
from inventory_snapshot.errors import ImportLocked, SnapshotError
from inventory_snapshot.factory import (
    ProfileNotFoundError,
    connect_profile,
    get_adapter,
    get_asset_store,
    read_profile_lock,
)
from inventory_snapshot.snapshot.loader import SnapshotMode, load_snapshot, validate_snapshot
from inventory_snapshot.snapshot.writer import export_full, export_lightweight

console = Console()


def _mode_for(path: Path) -> SnapshotMode:
    return "archive" if path.suffix.lower() == ".zip" else "json"


def _load_cli_config(args: argparse.Namespace) -> SnapshotConfig:
    config_path = Path(args.config) if args.config else None
    return load_config(config_path)


def _summary_table(counts: dict[str, dict[str, int]], wiped: bool) -> Table:
    table = Table(title="Restore summary")
    table.add_column("Entity", style="cyan")
    for column in ("inserted", "updated", "skipped"):
        table.add_column(column.capitalize(), justify="right")
    if wiped:
        table.add_column("Deleted", justify="right")
    for name, c in counts.items():
        row = [name, str(c["inserted"]), str(c["updated"]), str(c["skipped"])]
        if wiped:
            row.append(str(c["deleted"]))
        table.add_row(*row)
    return table


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_connect(args: argparse.Namespace) -> int:
    console.print("Connecting to store...", style="dim")
    config = _load_cli_config(args) if args.config else None
    result = await connect_profile(args.profile_name, env_prefix=args.env_prefix, config=config)
    if result.success:
        console.print(
            f"[bold green]v[/bold green] Connected to profile: "
            f"[bold cyan]{result.profile_name}[/bold cyan]"
        )
        return 0
    console.print(f"[bold red]x[/bold red] {escape(result.error or '')}")
    return 1


async def _async_export(args: argparse.Namespace) -> int:
    config = _load_cli_config(args)
    adapter = await get_adapter(args.profile, args.env_prefix, config)
    try:
        if args.full:
            assets = get_asset_store(args.profile, args.env_prefix, config)
            data = await export_full(adapter, assets)
        else:
            data = (await export_lightweight(adapter)).encode("utf-8")
    finally:
        await adapter.close()

    if args.output:
        output = Path(args.output)
    else:
        timestamp = datetime.now().strftime("%Y-%m-%d-%H%M")
        suffix = "zip" if args.full else "json"
        output = Path.cwd() / "backups" / f"inventory-{timestamp}.{suffix}"
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(data)

    console.print(f"[bold green]v[/bold green] Snapshot written: {output} ({len(data)} bytes)")
    return 0


async def _async_import(args: argparse.Namespace) -> int:
    config = _load_cli_config(args)
    if config.snapshot.demo_mode:
        raise ImportLocked("Demo mode: importing data is disabled")

    path = Path(args.snapshot_path)
    artifact = path.read_bytes()
    mode = _mode_for(path)

    adapter = await get_adapter(args.profile, args.env_prefix, config)
    try:
        assets = get_asset_store(args.profile, args.env_prefix, config) if mode == "archive" else None
        summary = await load_snapshot(
            adapter,
            artifact,
            mode,
            wipe_first=args.wipe,
            assets=assets,
            staging_dir=config.snapshot.staging_dir,
            restore_users=args.users or config.snapshot.restore_users,
            operator_id=args.operator,
            dry_run=args.dry_run,
        )
    finally:
        await adapter.close()

    console.print(
        _summary_table(
            {name: c.model_dump() for name, c in summary.entities.items()},
            summary.wiped,
        )
    )
    if summary.dry_run:
        console.print("[yellow]Dry run: nothing was written.[/yellow]")
    elif summary.assets:
        console.print(f"  Assets committed: {summary.assets}")
    return 0


# ============================================================================
# Command handlers
# ============================================================================


def cmd_connect(args: argparse.Namespace) -> int:
    """Handle connect command."""
    try:
        return asyncio.run(_async_connect(args))
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]x[/bold red] {escape(str(e))}")
        return 1


def cmd_profiles(args: argparse.Namespace) -> int:
    """Handle profiles command (reads local files only)."""
    try:
        config = _load_cli_config(args)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]x[/bold red] {escape(str(e))}")
        return 1

    current = read_profile_lock()
    table = Table(title="Store profiles")
    table.add_column("Profile", style="cyan")
    table.add_column("Description")
    table.add_column("Assets")
    table.add_column("Active", justify="center")
    for name, profile in config.profiles.items():
        table.add_row(name, profile.description, profile.asset_root, "*" if name == current else "")
    console.print(table)
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Handle export command."""
    try:
        return asyncio.run(_async_export(args))
    except (SnapshotError, ProfileNotFoundError, FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]x[/bold red] Export failed: {escape(str(e))}")
        return 1


def cmd_import(args: argparse.Namespace) -> int:
    """Handle import command."""
    if args.wipe and not args.yes and not args.dry_run:
        console.print(f"[yellow]This will DELETE existing data and restore from: {escape(args.snapshot_path)}[/yellow]")
        response = console.input(escape("Continue? [y/N] "))
        if response.lower() not in ["y", "yes"]:
            console.print("Cancelled.")
            return 0

    try:
        return asyncio.run(_async_import(args))
    except SnapshotError as e:
        console.print(f"[bold red]x[/bold red] Import failed ({e.kind}): {escape(str(e))}")
        return 1
    except (ProfileNotFoundError, FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]x[/bold red] Import failed: {escape(str(e))}")
        return 1


def cmd_validate(args: argparse.Namespace) -> int:
    """Handle validate command (no store access)."""
    path = Path(args.snapshot_path)
    try:
        artifact = path.read_bytes()
    except OSError as e:
        console.print(f"[bold red]x[/bold red] Cannot read {path}: {escape(str(e))}")
        return 1

    result = validate_snapshot(artifact, _mode_for(path))
    console.print(f"Validating: {path}")

    for error in result["errors"]:
        console.print(f"  [red]- {escape(error)}[/red]")
    for warning in result["warnings"]:
        console.print(f"  [yellow]- {escape(warning)}[/yellow]")

    if not result["valid"]:
        console.print("[bold red]x[/bold red] Snapshot is invalid")
        return 1

    counts = ", ".join(f"{name}={n}" for name, n in result["counts"].items())
    console.print(f"  Records: {counts}")
    suffix = " (with warnings)" if result["warnings"] else ""
    console.print(f"[bold green]v[/bold green] Snapshot is valid{suffix}")
    return 0


# ============================================================================
# Parser
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inventory-snapshot",
        description="Inventory snapshot backup and restore",
    )
    parser.add_argument("--config", help="Path to snapshot.toml (default: ./snapshot.toml)")
    parser.add_argument("--profile", "-p", help="Profile name (default: active profile)")
    parser.add_argument("--env-prefix", default="", help="Prefix for the SNAPSHOT_PROFILE env var")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show log output")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")
    subparsers.required = True

    connect_parser = subparsers.add_parser("connect", help="Test and activate a profile")
    connect_parser.add_argument("profile_name", help="Profile name from snapshot.toml")
    connect_parser.set_defaults(func=cmd_connect)

    profiles_parser = subparsers.add_parser("profiles", help="List profiles")
    profiles_parser.set_defaults(func=cmd_profiles)

    export_parser = subparsers.add_parser("export", help="Export a snapshot")
    export_parser.add_argument("--full", action="store_true", help="Zip archive including images")
    export_parser.add_argument("--output", "-o", help="Output file (default: backups/inventory-{timestamp}.json|zip)")
    export_parser.set_defaults(func=cmd_export)

    import_parser = subparsers.add_parser("import", help="Restore a snapshot")
    import_parser.add_argument("snapshot_path", help="Snapshot file (.json or .zip)")
    import_parser.add_argument("--wipe", action="store_true", help="Delete existing data first")
    import_parser.add_argument("--users", action="store_true", help="Also restore user accounts")
    import_parser.add_argument("--operator", help="Your user id or username (never overwritten)")
    import_parser.add_argument("--dry-run", action="store_true", help="Preview changes without applying them")
    import_parser.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")
    import_parser.set_defaults(func=cmd_import)

    validate_parser = subparsers.add_parser("validate", help="Validate a snapshot file")
    validate_parser.add_argument("snapshot_path", help="Snapshot file (.json or .zip)")
    validate_parser.set_defaults(func=cmd_validate)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
