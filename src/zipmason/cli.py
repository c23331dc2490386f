"""Command line front end.

    zipmason list archive.zip
    zipmason decompress archive.zip out/ [entries...]
    zipmason compress archive.zip a.txt sub/b.txt --level 0
    zipmason extract archive.zip sub/b.txt out/
    zipmason update archive.zip c.txt
    zipmason config

Every command runs through the process-wide JobScheduler.
"""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from zipmason import __version__
from zipmason.core.config import ConfigResolver, SchedulerConfig
from zipmason.core.errors import ConfigError, ZipMasonError
from zipmason.core.jobs import (
    CompressOptions,
    DecompressOptions,
    ExtractOptions,
    JobScheduler,
    UpdateOptions,
    destroy_scheduler,
    get_scheduler,
)
from zipmason.core.logging import (
    LogFileSink,
    apply_logging_policy,
    attach_log_file,
    detach_log_file,
    get_logger,
    set_colors,
)
from zipmason.core.models import CompressionLevel, OperationResult
from zipmason.core.progress import ProgressCallback

_logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zipmason",
        description="Safe, concurrent ZIP archive operations driven by 7-Zip",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    parser.add_argument("--7za", dest="executable_path", metavar="PATH", help="Archiver executable")
    parser.add_argument(
        "--max-concurrent", type=int, metavar="N", help="Maximum archiver processes at once"
    )
    parser.add_argument("--config", type=Path, help="User config file path")
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Verbose output (-vv for debug)"
    )
    parser.add_argument("-q", "--quiet", action="store_true", help="Warnings and errors only")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")
    parser.add_argument(
        "--log-file", type=Path, metavar="PATH", help="Also append log output to PATH"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("list", help="List archive entries")
    p.add_argument("archive")

    p = sub.add_parser("decompress", help="Extract an archive")
    p.add_argument("archive")
    p.add_argument("dest")
    p.add_argument("entries", nargs="*", help="Only extract these entries")

    p = sub.add_parser("compress", help="Create a ZIP archive")
    p.add_argument("archive")
    p.add_argument("sources", nargs="+")
    p.add_argument(
        "--level",
        type=int,
        choices=[int(level) for level in CompressionLevel],
        help="0 = store, 1 = fast, 5 = normal",
    )
    p.add_argument("--base-dir", type=Path, help="Directory relative sources are taken from")

    p = sub.add_parser("extract", help="Extract a single entry")
    p.add_argument("archive")
    p.add_argument("entry")
    p.add_argument("dest")

    p = sub.add_parser("update", help="Add or refresh files in an archive")
    p.add_argument("archive")
    p.add_argument("sources", nargs="+")
    p.add_argument("--base-dir", type=Path, help="Directory relative sources are taken from")

    sub.add_parser("config", help="Show resolved configuration")

    return parser


def build_resolver(args: argparse.Namespace) -> ConfigResolver:
    """Translate parsed arguments into the CLI layer of the config."""
    cli_args: dict[str, Any] = {}
    if args.executable_path:
        cli_args["executable_path"] = args.executable_path
    if args.max_concurrent is not None:
        cli_args["max_concurrent"] = args.max_concurrent
    if getattr(args, "level", None) is not None:
        cli_args["compression_level"] = args.level

    logging_args: dict[str, Any] = {}
    if args.quiet:
        logging_args["level"] = "quiet"
    elif args.verbose >= 2:
        logging_args["level"] = "debug"
    elif args.verbose == 1:
        logging_args["level"] = "verbose"
    if args.no_color:
        logging_args["color"] = False
    if logging_args:
        cli_args["logging"] = logging_args

    return ConfigResolver(cli_args=cli_args, user_config_path=args.config)


def _format_size(size: int | None) -> str:
    return "" if size is None else f"{size:,}"


def render_listing(console: Console, result: OperationResult, title: str) -> None:
    table = Table(title=title)
    table.add_column("Name", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Packed", justify="right")
    table.add_column("Modified")
    table.add_column("CRC")
    for info in result.files:
        table.add_row(
            escape(info.filename),
            _format_size(info.size),
            _format_size(info.compressed_size),
            info.date.strftime("%Y-%m-%d %H:%M:%S"),
            info.crc or "",
        )
    console.print(table)
    console.print(f"{len(result.files)} entries")


def render_config(console: Console, resolver: ConfigResolver) -> None:
    table = Table(title="zipmason configuration")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_column("Source", style="dim")
    for key, source in resolver.resolve_all().items():
        table.add_row(key, escape(str(source.value)), source.source)
    console.print(table)


async def _with_progress(
    console: Console,
    show: bool,
    description: str,
    submit: Callable[[ProgressCallback | None], Any],
) -> OperationResult:
    if not show:
        return await submit(None)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task_id = progress.add_task(escape(description), total=100)

        def on_progress(percent: int | None, message: str) -> None:
            if percent is None:
                progress.update(task_id, description=escape(message))
            else:
                progress.update(task_id, completed=percent, description=escape(message))

        return await submit(on_progress)


async def run_command(
    args: argparse.Namespace,
    resolver: ConfigResolver,
    scheduler: JobScheduler,
    console: Console,
    show_progress: bool,
) -> int:
    command = args.command

    if command == "list":
        result = await scheduler.submit_list(args.archive)
        render_listing(console, result, args.archive)

    elif command == "decompress":
        entries = args.entries or None
        result = await _with_progress(
            console,
            show_progress,
            f"Extracting {args.archive}",
            lambda cb: scheduler.submit_decompress(
                args.archive, args.dest, DecompressOptions(entries=entries, on_progress=cb)
            ),
        )
        console.print(result.message, markup=False, highlight=False)

    elif command == "compress":
        level = CompressionLevel(resolver.resolve_compression_level())
        result = await _with_progress(
            console,
            show_progress,
            f"Compressing {args.archive}",
            lambda cb: scheduler.submit_compress(
                args.sources,
                args.archive,
                CompressOptions(level=level, on_progress=cb, base_dir=args.base_dir),
            ),
        )
        console.print(result.message, markup=False, highlight=False)

    elif command == "extract":
        result = await _with_progress(
            console,
            show_progress,
            f"Extracting {args.entry}",
            lambda cb: scheduler.submit_extract_single(
                args.archive, args.entry, args.dest, ExtractOptions(on_progress=cb)
            ),
        )
        console.print(result.message, markup=False, highlight=False)

    elif command == "update":
        result = await _with_progress(
            console,
            show_progress,
            f"Updating {args.archive}",
            lambda cb: scheduler.submit_update(
                args.archive, args.sources, UpdateOptions(on_progress=cb, base_dir=args.base_dir)
            ),
        )
        console.print(result.message, markup=False, highlight=False)

    await scheduler.join()
    return 0


async def _main_async(args: argparse.Namespace, resolver: ConfigResolver, console: Console) -> int:
    policy = resolver.resolve_logging_policy()
    scheduler = get_scheduler(SchedulerConfig.from_resolver(resolver))
    try:
        return await run_command(args, resolver, scheduler, console, policy.emit_progress)
    finally:
        destroy_scheduler()


def open_log_file(path: Path) -> LogFileSink:
    try:
        return attach_log_file(path)
    except OSError as e:
        raise ConfigError(
            f"Cannot open log file '{path}': {e.strerror or e}",
            "Check that the directory is writable",
        ) from e


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    err_console = Console(stderr=True, no_color=args.no_color)
    log_sink: LogFileSink | None = None
    try:
        resolver = build_resolver(args)
        policy = resolver.resolve_logging_policy()
        apply_logging_policy(policy)
        set_colors(policy.color)
        console = Console(no_color=not policy.color)
        if args.log_file is not None:
            log_sink = open_log_file(args.log_file)

        if args.command == "config":
            render_config(console, resolver)
            return 0

        return asyncio.run(_main_async(args, resolver, console))
    except ZipMasonError as e:
        _logger.debug(f"{type(e).__name__}: {e}")
        err_console.print(f"[bold red]error:[/bold red] {escape(e.message)}", highlight=False)
        if e.suggestion:
            err_console.print(f"Suggestion: {e.suggestion}", markup=False, highlight=False)
        return 1
    except KeyboardInterrupt:
        err_console.print("Interrupted")
        return 130
    finally:
        if log_sink is not None:
            detach_log_file(log_sink)
