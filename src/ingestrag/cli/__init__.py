"""Command line interface for ingestrag."""

from __future__ import annotations

import argparse
import asyncio
import sys

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

from ingestrag.core.config import IngestRAGConfig
from ingestrag.core.exceptions import ConfigurationError, IngestRAGError, LockConflictError
from ingestrag.core.logging_config import configure_logging
from ingestrag.core.models import (
    MaintenancePlan,
    PipelineStats,
    ProcessReport,
    ScanSummary,
)
from ingestrag.core.provider_factory import PIPELINE_TYPES, build_registry
from ingestrag.core.state import StateManager
from ingestrag.lock import create_lock_store
from ingestrag.lock._base import utcnow
from ingestrag.maintenance import ConsistencyMaintainer
from ingestrag.pipeline import IngestionPipeline, PipelineRegistry

INGESTRAG_THEME = Theme(
    {
        "info": "bold cyan",
        "success": "bold green",
        "warning": "bold yellow",
        "error": "bold red",
        "highlight": "bold magenta",
        "dim": "grey50",
    }
)

console = Console(theme=INGESTRAG_THEME)


def _load_config() -> IngestRAGConfig:
    config = IngestRAGConfig()
    configure_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_timestamps=config.log_timestamps,
    )
    return config


def _stats_table(stats: dict[str, PipelineStats]) -> Table:
    table = Table(box=None, header_style="highlight", pad_edge=False)
    table.add_column("Pipeline")
    for column in ("Items", "Completed", "Pending", "Processing", "Failed", "Chunks", "Embedded"):
        table.add_column(column, justify="right")
    for name, s in stats.items():
        table.add_row(
            name,
            str(s.total_items),
            str(s.completed_items),
            str(s.pending_items),
            str(s.processing_items),
            str(s.failed_items),
            str(s.total_chunks),
            str(s.embedded_chunks),
        )
    return table


def _pipeline(registry: PipelineRegistry, task_type: str) -> IngestionPipeline:
    if task_type not in registry:
        raise ConfigurationError(f"Pipeline '{task_type}' is not enabled")
    return registry[task_type]


def _print_scan(task_type: str, summary: ScanSummary) -> None:
    console.print(
        f"[success]{task_type}:[/] {summary.new_saved} new, "
        f"{summary.pending} pending, {summary.completed} completed of {summary.total}"
    )


def _print_report(report: ProcessReport) -> None:
    table = Table(box=None, header_style="highlight", pad_edge=False)
    table.add_column("Key")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Retries", justify="right")
    table.add_column("Error", style="dim")
    for result in report.results:
        style = "success" if result.status == "completed" else "error"
        table.add_row(
            result.key,
            f"[{style}]{result.status}[/]",
            str(result.chunk_count),
            str(result.retry_count),
            result.error or "",
        )
    console.print(table)
    if report.stopped_by_user:
        console.print("[warning]Stopped on request.[/]")
    console.print(
        f"[info]Processed {report.processed_count}, {report.remaining_count} still pending.[/]"
    )


def _print_plan(plan: MaintenancePlan) -> None:
    if not plan.deletions:
        console.print(f"[success]{plan.pipeline_type}: nothing to clean up.[/]")
        return
    table = Table(box=None, header_style="highlight", pad_edge=False)
    table.add_column("Key")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Reason", style="dim")
    for d in plan.deletions:
        table.add_row(d.external_key, d.title, d.status, str(d.chunk_count), d.reason)
    console.print(table)
    console.print(f"[info]{plan.total_items} items, {plan.total_chunks} chunks planned.[/]")


async def scan_cmd(
    task_type: str,
    list_url: str | None,
    start_key: str | None,
    end_key: str | None,
    max_pages: int | None,
    full: bool,
) -> None:
    config = _load_config()
    async with build_registry(config) as registry:
        pipeline = _pipeline(registry, task_type)
        scan_config = pipeline.scan_config(list_url, start_key, end_key, max_pages)
        with console.status(f"[info]Scanning {scan_config.list_url}...", spinner="dots"):
            summary = await pipeline.scan(scan_config, full_rescan=full)
    _print_scan(task_type, summary)


async def process_cmd(task_type: str, max_items: int | None) -> None:
    config = _load_config()
    async with build_registry(config) as registry:
        with console.status(f"[info]Processing {task_type} items...", spinner="dots"):
            report = await _pipeline(registry, task_type).process(max_items)
    _print_report(report)


async def stats_cmd(task_types: list[str]) -> None:
    config = _load_config()
    async with StateManager(config.database_path) as state:
        stats = {name: await state.stats(name) for name in task_types}
    console.print(_stats_table(stats))


async def maintenance_cmd(task_type: str, execute: bool) -> None:
    config = _load_config()
    async with StateManager(config.database_path) as state:
        maintainer = ConsistencyMaintainer(
            state, task_type, orphan_age_seconds=config.orphan_age_seconds
        )
        plan = await maintainer.analyze()
        _print_plan(plan)
        if execute and plan.deletions:
            result = await maintainer.execute(plan)
            console.print(
                f"[success]Deleted {result.items_deleted} items, "
                f"{result.chunks_deleted} chunks.[/]"
            )


async def lock_cmd(action: str, task_type: str) -> None:
    config = _load_config()
    store = create_lock_store(config)
    if action == "release":
        await store.release(task_type)
        console.print(f"[success]Released lock for {task_type}.[/]")
        return
    if action == "stop":
        if await store.request_stop(task_type):
            console.print(f"[success]Stop requested for {task_type}.[/]")
        else:
            console.print(f"[warning]{task_type} is not running.[/]")
        return

    lock = await store.status(task_type)
    if lock is None:
        console.print(f"[dim]{task_type} is not locked.[/]")
        return
    console.print(
        Panel(
            f"{lock.description}\n"
            f"Running for {lock.elapsed_minutes(utcnow())} min, "
            f"{lock.processed_count}/{lock.total_count} items\n"
            f"Current item: {lock.current_item or '-'}\n"
            f"Stop requested: {'yes' if lock.stop_requested else 'no'}",
            title=f"{task_type} lock",
            title_align="left",
            border_style="info",
        )
    )


def serve_cmd(host: str | None, port: int | None) -> None:
    import uvicorn

    from ingestrag.api import create_app

    config = _load_config()
    app = create_app(build_registry(config))
    uvicorn.run(app, host=host or config.api_host, port=port or config.api_port)


def main() -> None:
    """Entry point with clean help documentation."""
    parser = argparse.ArgumentParser(
        description="ingestrag: incremental content ingestion for RAG",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ingestrag scan bulletin --max-pages 3
  ingestrag process sermon --max-items 2
  ingestrag maintenance news --execute
  ingestrag lock stop sermon
  ingestrag serve --port 8000
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Bind port")

    scan_parser = subparsers.add_parser("scan", help="Discover new items from a listing")
    scan_parser.add_argument("pipeline", choices=PIPELINE_TYPES)
    scan_parser.add_argument("--list-url", help="Listing URL (default: from settings)")
    scan_parser.add_argument("--start", help="Newest key, date or URL to include")
    scan_parser.add_argument("--end", help="Oldest key, date or URL to include")
    scan_parser.add_argument("--max-pages", type=int, help="Maximum listing pages to read")
    scan_parser.add_argument(
        "--full", action="store_true", help="Read every page and drop pending/failed items first"
    )

    process_parser = subparsers.add_parser("process", help="Process pending items")
    process_parser.add_argument("pipeline", choices=PIPELINE_TYPES)
    process_parser.add_argument("--max-items", type=int, help="Items to process in this run")

    stats_parser = subparsers.add_parser("stats", help="Show item and chunk counts")
    stats_parser.add_argument("pipelines", nargs="*", help="Pipelines to show (default: all)")

    maintenance_parser = subparsers.add_parser(
        "maintenance", help="Find empty, orphaned and duplicate items"
    )
    maintenance_parser.add_argument("pipeline", choices=PIPELINE_TYPES)
    maintenance_parser.add_argument(
        "--execute", action="store_true", help="Delete the planned items"
    )

    lock_parser = subparsers.add_parser("lock", help="Inspect or control task locks")
    lock_parser.add_argument("action", choices=("status", "release", "stop"))
    lock_parser.add_argument("task_type")

    args = parser.parse_args()

    try:
        if args.command == "serve":
            serve_cmd(args.host, args.port)
        elif args.command == "scan":
            asyncio.run(
                scan_cmd(
                    args.pipeline, args.list_url, args.start, args.end, args.max_pages, args.full
                )
            )
        elif args.command == "process":
            asyncio.run(process_cmd(args.pipeline, args.max_items))
        elif args.command == "stats":
            asyncio.run(stats_cmd(args.pipelines or list(PIPELINE_TYPES)))
        elif args.command == "maintenance":
            asyncio.run(maintenance_cmd(args.pipeline, args.execute))
        elif args.command == "lock":
            asyncio.run(lock_cmd(args.action, args.task_type))
        else:
            parser.print_help()
    except LockConflictError as e:
        console.print(f"[warning]{e}[/]")
        sys.exit(2)
    except IngestRAGError as e:
        console.print(f"[error]{e}[/]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[warning]Operation cancelled by user.[/]")
        sys.exit(0)


if __name__ == "__main__":
    main()
