"""
engine-selector command line.

Commands:
    list-engines                 Score all engines against this machine
    show-engine [<engine>]       Show one engine with its score and issues
    use-engine <engine>|--auto   Select the engine to use
    validate-engines <path>...   Lint engine manifests without scoring
    select-engine                Score a hardware snapshot read from stdin
    show-machine                 Print the hardware snapshot of this machine
    get-config [<key>]           Print configuration values
    set-config <key>=<value>     Override a configuration value
    unset-config <key>           Remove a configuration override
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from engine_selector import __version__
from engine_selector.config.manager import PACKAGE_LAYER, USER_LAYER, ConfigManager, UnknownConfigKeyError
from engine_selector.schemas.hardware import HardwareSnapshot, SnapshotParseError, load_snapshot
from engine_selector.schemas.manifest import ScoredManifest
from engine_selector.services.connections import ConnectionCheckError, always_connected
from engine_selector.services.engines import (
    ManifestLoadError,
    ManifestNotFoundError,
    ManifestValidationError,
    load_manifest,
    load_manifests,
    validate,
)
from engine_selector.services.hardware import DetectionFailedError, SnapshotCache, probe_snapshot
from engine_selector.services.selector import (
    MeasurementMissingError,
    NoCompatibleEngineError,
    display_order,
    score_engines,
    top_engine,
)
from engine_selector.utils.logger import log, setup_logging

# Errors reported as one red line instead of a traceback
HANDLED_ERRORS = (
    ManifestValidationError,
    ManifestNotFoundError,
    ManifestLoadError,
    MeasurementMissingError,
    DetectionFailedError,
    ConnectionCheckError,
    SnapshotParseError,
    UnknownConfigKeyError,
)


class CliContext:
    """State shared by all commands of one invocation."""

    def __init__(self, args: argparse.Namespace, console: Console, err_console: Console):
        self.args = args
        self.console = console
        self.err_console = err_console
        self.config = ConfigManager(args.config_dir)
        self.engines_dir = Path(args.engines_dir) if args.engines_dir else self.config.get_engines_dir()
        self.storage_path = self.config.get_storage_path()

    def snapshot_cache(self) -> SnapshotCache:
        return SnapshotCache(probe=lambda: probe_snapshot(self.storage_path))

    def machine_snapshot(self) -> HardwareSnapshot:
        return self.snapshot_cache().get()

    def score_all(self) -> List[ScoredManifest]:
        manifests = load_manifests(self.engines_dir)
        return score_engines(self.machine_snapshot(), manifests, storage_path=self.storage_path)


def _dump(data: Any, fmt: str) -> str:
    if fmt == "json":
        return json.dumps(data, indent=2)
    return yaml.safe_dump(data, sort_keys=False)


def _print_plain(console: Console, text: str) -> None:
    console.print(text, markup=False, emoji=False, highlight=False, soft_wrap=True)


def _compat(scored: ScoredManifest) -> str:
    if not scored.compatible:
        return "no"
    return "yes" if scored.manifest.is_stable else "devel"


def _evaluation_line(scored: ScoredManifest) -> str:
    if not scored.compatible:
        return f"✘ {scored.name}: not compatible: {', '.join(scored.compatibility_issues)}"
    if not scored.manifest.is_stable:
        return f"− {scored.name}: devel, score={scored.score}"
    return f"✔ {scored.name}: compatible, score={scored.score}"


# =============================================================================
# Commands
# =============================================================================

def cmd_list_engines(ctx: CliContext) -> int:
    scored = display_order(ctx.score_all())
    if not scored:
        ctx.err_console.print("No engines found.")
        return 0

    active = ctx.config.get_active_engine()

    table = Table(box=None, show_edge=False, pad_edge=False)
    table.add_column("engine", style="bold", no_wrap=True)
    table.add_column("vendor", no_wrap=True)
    table.add_column("description")
    table.add_column("compat", no_wrap=True)

    for engine in scored:
        name = engine.name + ("*" if engine.name == active else "")
        table.add_row(name, engine.manifest.vendor, engine.manifest.description, _compat(engine))

    ctx.console.print(table)
    return 0


def cmd_show_engine(ctx: CliContext) -> int:
    engine_name = ctx.args.engine or ctx.config.get_active_engine()
    if not engine_name:
        ctx.err_console.print("[red]Error:[/red] no active engine, specify an engine name")
        return 1

    manifest = load_manifest(ctx.engines_dir, engine_name)
    scored = score_engines(ctx.machine_snapshot(), [manifest], storage_path=ctx.storage_path)[0]
    _print_plain(ctx.console, _dump(scored.to_dict(), ctx.args.format))
    return 0


def _switch_engine(ctx: CliContext, engine_name: str) -> int:
    try:
        manifest = load_manifest(ctx.engines_dir, engine_name)
    except ManifestNotFoundError as e:
        log.debug(str(e))
        ctx.err_console.print(f'[red]Error:[/red] "{engine_name}" not found')
        return 1

    previous = ctx.config.get_active_engine()
    if previous == engine_name:
        _print_plain(ctx.console, f'Engine "{engine_name}" is already active.')
        return 0

    previous_keys: List[str] = []
    if previous:
        try:
            previous_keys = list(load_manifest(ctx.engines_dir, previous).configurations)
        except ManifestNotFoundError:
            log.warning(f"Previous engine {previous} no longer exists, keeping user overrides")

    ctx.config.activate_engine(engine_name, manifest.configurations, previous_keys)

    if manifest.components:
        ctx.console.print("Required components:")
        for component in manifest.components:
            _print_plain(ctx.console, f"- {component}")

    _print_plain(ctx.console, f'Engine changed to "{engine_name}".')
    return 0


def cmd_use_engine(ctx: CliContext) -> int:
    if ctx.args.auto:
        if ctx.args.engine:
            ctx.err_console.print("[red]Error:[/red] cannot specify both engine name and --auto")
            return 1

        scored = ctx.score_all()
        ctx.console.print("Evaluating engines for optimal hardware compatibility:")
        for engine in scored:
            _print_plain(ctx.console, _evaluation_line(engine))

        selected = top_engine(scored)
        _print_plain(ctx.console, f"Selected engine: {selected.name}")
        return _switch_engine(ctx, selected.name)

    if not ctx.args.engine:
        ctx.err_console.print("[red]Error:[/red] engine name not specified")
        return 1
    return _switch_engine(ctx, ctx.args.engine)


def cmd_validate_engines(ctx: CliContext) -> int:
    failed = 0
    for path in ctx.args.paths:
        try:
            validate(path)
        except (ManifestValidationError, ManifestLoadError) as e:
            failed += 1
            _print_plain(ctx.console, f"❌ {path}: {e.message}")
            continue
        _print_plain(ctx.console, f"✅ {path}")

    return 1 if failed else 0


def cmd_select_engine(ctx: CliContext) -> int:
    snapshot = load_snapshot(sys.stdin)

    engines_dir = Path(ctx.args.engines) if ctx.args.engines else ctx.engines_dir
    manifests = load_manifests(engines_dir)

    # The snapshot may come from another machine; snap connections cannot be checked here
    scored = score_engines(snapshot, manifests, always_connected, ctx.storage_path)

    for engine in scored:
        _print_plain(ctx.err_console, _evaluation_line(engine))

    try:
        selected: Optional[str] = top_engine(scored).name
    except NoCompatibleEngineError:
        selected = None
        ctx.err_console.print("No compatible engine found.")

    result: Dict[str, Any] = {
        "engines": [engine.to_dict() for engine in scored],
        "top-engine": selected,
    }
    _print_plain(ctx.console, _dump(result, ctx.args.format))
    return 0


def cmd_show_machine(ctx: CliContext) -> int:
    cache = ctx.snapshot_cache()
    if ctx.args.refresh:
        cache.invalidate()
    _print_plain(ctx.console, _dump(cache.get().to_dict(), ctx.args.format))
    return 0


def _config_layer(ctx: CliContext) -> str:
    return PACKAGE_LAYER if ctx.args.package else USER_LAYER


def cmd_get_config(ctx: CliContext) -> int:
    key = ctx.args.key or ""
    values = ctx.config.get_layered(key)

    if key and not values:
        ctx.err_console.print(f'[red]Error:[/red] no value set for key "{escape(key)}"')
        return 1

    # A single leaf key prints its bare value
    if key in values and len(values) == 1:
        _print_plain(ctx.console, str(values[key]))
        return 0

    _print_plain(ctx.console, _dump(values, ctx.args.format))
    return 0


def cmd_set_config(ctx: CliContext) -> int:
    assignment = ctx.args.assignment
    key, sep, value = assignment.partition("=")
    if not sep:
        ctx.err_console.print(f'[red]Error:[/red] expected key=value, got "{escape(assignment)}"')
        return 1
    if not key:
        ctx.err_console.print("[red]Error:[/red] key must not start with an equal sign")
        return 1

    ctx.config.set_layer_value(key, value, _config_layer(ctx))
    return 0


def cmd_unset_config(ctx: CliContext) -> int:
    if not ctx.config.unset_layer_value(ctx.args.key, _config_layer(ctx)):
        log.debug(f"No {_config_layer(ctx)} value set for {ctx.args.key}")
    return 0


# =============================================================================
# Entry point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="engine-selector",
        description="Select the hardware acceleration engine best suited to this machine",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--engines-dir", help="Directory with one sub-directory per engine")
    parser.add_argument("--config-dir", help="Directory holding config.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    list_parser = subparsers.add_parser("list-engines", help="List available engines")
    list_parser.set_defaults(func=cmd_list_engines)

    show_parser = subparsers.add_parser("show-engine", help="Show engine details")
    show_parser.add_argument("engine", nargs="?", help="Engine name (default: active engine)")
    show_parser.add_argument("--format", choices=["yaml", "json"], default="yaml")
    show_parser.set_defaults(func=cmd_show_engine)

    use_parser = subparsers.add_parser("use-engine", help="Select an engine")
    use_parser.add_argument("engine", nargs="?", help="Engine name")
    use_parser.add_argument("--auto", action="store_true", help="Automatically select a compatible engine")
    use_parser.set_defaults(func=cmd_use_engine)

    validate_parser = subparsers.add_parser("validate-engines", help="Validate engine manifests")
    validate_parser.add_argument("paths", nargs="+", metavar="path", help="Path to an engine.yaml file")
    validate_parser.set_defaults(func=cmd_validate_engines)

    select_parser = subparsers.add_parser(
        "select-engine",
        help="Score engines against a hardware snapshot read from stdin",
    )
    select_parser.add_argument("--engines", help="Engines directory (default: --engines-dir)")
    select_parser.add_argument("--format", choices=["yaml", "json"], default="yaml")
    select_parser.set_defaults(func=cmd_select_engine)

    machine_parser = subparsers.add_parser("show-machine", help="Print detected hardware")
    machine_parser.add_argument("--format", choices=["yaml", "json"], default="yaml")
    machine_parser.add_argument("--refresh", action="store_true", help="Probe again instead of using the cache")
    machine_parser.set_defaults(func=cmd_show_machine)

    get_config_parser = subparsers.add_parser("get-config", help="Print configurations")
    get_config_parser.add_argument("key", nargs="?", help="Dotted key (default: all values)")
    get_config_parser.add_argument("--format", choices=["yaml", "json"], default="yaml")
    get_config_parser.set_defaults(func=cmd_get_config)

    set_config_parser = subparsers.add_parser("set-config", help="Set a configuration")
    set_config_parser.add_argument("assignment", metavar="key=value")
    set_config_parser.add_argument("--package", action="store_true", help=argparse.SUPPRESS)
    set_config_parser.set_defaults(func=cmd_set_config)

    unset_config_parser = subparsers.add_parser("unset-config", help="Remove a configuration override")
    unset_config_parser.add_argument("key", help="Dotted key; keys below it are removed too")
    unset_config_parser.add_argument("--package", action="store_true", help=argparse.SUPPRESS)
    unset_config_parser.set_defaults(func=cmd_unset_config)

    return parser


def main(
    argv: Optional[List[str]] = None,
    console: Optional[Console] = None,
    err_console: Optional[Console] = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    err_console = err_console or Console(stderr=True)
    setup_logging(args.verbose, err_console)

    if not getattr(args, "func", None):
        parser.print_help()
        return 2

    try:
        ctx = CliContext(args, console or Console(), err_console)
        return args.func(ctx)
    except NoCompatibleEngineError:
        err_console.print("[yellow]No compatible engine found.[/yellow]")
        return 1
    except HANDLED_ERRORS as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False, soft_wrap=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
