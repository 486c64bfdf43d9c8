"""Typer CLI entrypoint for airdrop-crawler."""

from __future__ import annotations

import signal
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Sequence

import typer
import yaml
from pydantic import ValidationError as SchemaError
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository, JobSchedule, ScheduleType, SourceConfig, SourceKind
from .engine.records import CanonicalRecord, RunLog
from .errors import AuthError
from .infra import SQLiteManager, SQLiteRecordStore, SQLiteRunLogStore, build_stores
from .logging_conf import available_source_logs, configure_logging, default_log_dir, tail_log
from .orchestrator import CycleSummary, Orchestrator
from .scheduler import APSchedulerAdapter, register_pipeline_jobs

app = typer.Typer(
    help="airdrop-crawler command line tools",
    no_args_is_help=True,
    rich_markup_mode=None,
)
source_app = typer.Typer(
    name="source",
    help="Source registry commands",
    no_args_is_help=True,
    rich_markup_mode=None,
)
log_app = typer.Typer(
    name="log",
    help="Log viewing commands",
    no_args_is_help=True,
    rich_markup_mode=None,
)

console = Console()

AUTH_EXIT_CODE = 2


@dataclass
class AppState:
    repository: ConfigRepository
    storage: SQLiteManager
    record_store: SQLiteRecordStore
    run_log_sink: SQLiteRunLogStore
    orchestrator: Orchestrator
    scheduler: APSchedulerAdapter


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    storage = SQLiteManager()
    record_store, run_log_sink = build_stores(storage, repository.database_path())
    orchestrator = Orchestrator(
        config_repository=repository,
        record_store=record_store,
        run_log_sink=run_log_sink,
    )
    return AppState(
        repository=repository,
        storage=storage,
        record_store=record_store,
        run_log_sink=run_log_sink,
        orchestrator=orchestrator,
        scheduler=APSchedulerAdapter(),
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _format_schedule(schedule: JobSchedule) -> str:
    if not schedule.enabled:
        return "disabled"
    if schedule.type is ScheduleType.CRON:
        return f"cron ({schedule.value})"
    return f"interval ({schedule.value})"


def _render_sources_table(sources: Sequence[SourceConfig]) -> Table:
    table = Table(title=f"Sources · {len(sources)} total", box=box.SIMPLE_HEAD)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Kind", style="magenta")
    table.add_column("Priority", justify="right")
    table.add_column("Locale")
    table.add_column("Active")
    table.add_column("Last run", style="green")
    table.add_column("Endpoint", overflow="fold")
    for source in sources:
        table.add_row(
            source.source_id,
            source.kind.value,
            str(source.priority),
            source.locale,
            "yes" if source.active else "no",
            source.last_run_at.isoformat(timespec="seconds") if source.last_run_at else "-",
            source.endpoint,
        )
    return table


def _render_summary_table(summary: CycleSummary) -> Table:
    table = Table(title="Cycle results", box=box.SIMPLE_HEAD)
    table.add_column("Source", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Found", justify="right")
    table.add_column("Inserted", justify="right", style="green")
    table.add_column("Duplicates", justify="right")
    table.add_column("Merges", justify="right")
    table.add_column("Error", style="red", overflow="fold")
    for outcome in summary.sources:
        table.add_row(
            outcome.source_id,
            outcome.status.value,
            str(outcome.items_found),
            str(outcome.inserted),
            str(outcome.duplicates),
            str(outcome.merges),
            outcome.error_message or "",
        )
    return table


def _render_records_table(records: Iterable[CanonicalRecord], title: str) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("Name", style="cyan")
    table.add_column("Category")
    table.add_column("Chain")
    table.add_column("Priority", justify="right")
    table.add_column("Rating")
    table.add_column("Featured")
    for record in records:
        table.add_row(
            record.name,
            record.category.value,
            record.chain,
            str(record.priority),
            record.potential_rating.value,
            "yes" if record.featured else "",
        )
    return table


def _render_runs_table(entries: Iterable[RunLog]) -> Table:
    table = Table(title="Recent runs", box=box.SIMPLE_HEAD)
    table.add_column("When", style="green", no_wrap=True)
    table.add_column("Source", style="cyan")
    table.add_column("Status")
    table.add_column("Found", justify="right")
    table.add_column("Inserted", justify="right")
    table.add_column("Seconds", justify="right")
    table.add_column("Error", style="red", overflow="fold")
    for entry in entries:
        table.add_row(
            entry.created_at.isoformat(timespec="seconds"),
            entry.source_id,
            entry.status.value,
            str(entry.items_found),
            str(entry.records_inserted),
            f"{entry.duration_seconds:.2f}",
            entry.error_message or "",
        )
    return table


def _render_jobs_table(jobs: Iterable[dict]) -> Table:
    table = Table(title="Scheduled jobs", box=box.SIMPLE_HEAD)
    table.add_column("Job ID", style="cyan", no_wrap=True)
    table.add_column("Next run", style="green")
    table.add_column("Trigger", style="magenta", overflow="fold")
    for job in jobs:
        table.add_row(
            str(job.get("id", "-")),
            str(job.get("next_run_time", "-")),
            str(job.get("trigger", "-")),
        )
    return table


app.add_typer(source_app, name="source", help="Manage the source registry (list/add/seed)")
app.add_typer(log_app, name="log", help="Inspect log files")


@app.callback()
def main(
    ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging", is_flag=True)
) -> None:
    ctx.obj = build_state(verbose)


@app.command("run", help="Run one collection cycle now.")
def run(
    ctx: typer.Context,
    token: Optional[str] = typer.Option(None, "--token", help="API token; runs the authenticated trigger path."),
    kinds: Optional[list[SourceKind]] = typer.Option(None, "--kind", help="Restrict the cycle to these source kinds."),
) -> None:
    state = _get_state(ctx)
    if token is not None:
        try:
            summary = state.orchestrator.trigger(token)
        except AuthError as exc:
            console.print(f"Unauthorized: {exc}", style="red")
            raise typer.Exit(code=AUTH_EXIT_CODE)
    else:
        summary = state.orchestrator.run_cycle(kinds=kinds or None)
    console.print(_render_summary_table(summary))
    console.print(
        f"success={summary.success} duplicates={summary.duplicates} "
        f"errors={summary.errors} merges={len(summary.merges)}"
    )


@app.command("urgent", help="List upcoming high-priority records from the store.")
def urgent(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    records = state.orchestrator.urgent_check()
    if not records:
        console.print("No urgent records.", style="dim")
        return
    console.print(_render_records_table(records, "Urgent airdrops"))


@app.command("maintenance", help="Purge old run logs and recompute featured records.")
def maintenance(
    ctx: typer.Context,
    dedupe_store: bool = typer.Option(
        False, "--dedupe-store", help="Also delete older same-name records.", is_flag=True
    ),
) -> None:
    state = _get_state(ctx)
    report = state.orchestrator.run_maintenance(dedupe_store=dedupe_store)
    console.print(
        f"purged_run_logs={report.purged_run_logs} featured={report.featured} "
        f"unfeatured={report.unfeatured} removed_duplicates={report.removed_duplicates}"
    )


@app.command("serve", help="Start the recurring jobs (and optionally the HTTP trigger).")
def serve(
    ctx: typer.Context,
    api: bool = typer.Option(False, "--api", help="Also serve POST /api/scrape.", is_flag=True),
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
) -> None:
    state = _get_state(ctx)
    jobs = state.orchestrator.global_config.jobs
    for job_id in ("full_cycle", "secondary_cycle", "urgent_check", "maintenance"):
        console.print(f"{job_id}: {_format_schedule(getattr(jobs, job_id))}", style="dim")
    register_pipeline_jobs(state.scheduler, state.orchestrator, jobs)
    state.scheduler.start()
    console.print(_render_jobs_table(state.scheduler.list_jobs()))
    try:
        if api:
            import uvicorn

            from .api import create_app

            uvicorn.run(create_app(state.orchestrator), host=host, port=port)
        else:
            stop = threading.Event()

            def _request_stop(signum, _frame) -> None:
                console.print(f"Received signal {signum}, stopping scheduler…", style="yellow")
                stop.set()

            signal.signal(signal.SIGINT, _request_stop)
            signal.signal(signal.SIGTERM, _request_stop)
            stop.wait()
    finally:
        # In-flight jobs finish; nothing new is started.
        state.scheduler.shutdown(wait=True)
        state.storage.close_all()


@app.command("runs", help="Show recent run log entries.")
def runs(
    ctx: typer.Context,
    source: Optional[str] = typer.Option(None, "--source", help="Filter by source id or job name."),
    limit: int = typer.Option(20, "--limit", help="Number of entries to show."),
) -> None:
    state = _get_state(ctx)
    entries = state.run_log_sink.recent(limit=limit, source_id=source)
    if not entries:
        console.print("No run logs yet.", style="dim")
        return
    console.print(_render_runs_table(entries))


@source_app.command("list", help="List configured sources in processing order.")
def source_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    sources = sorted(state.repository.list_sources(), key=lambda s: (-s.priority, s.source_id))
    if not sources:
        console.print("No sources configured; run `airdrop-crawler source seed`.", style="yellow")
        raise typer.Exit(code=0)
    console.print(_render_sources_table(sources))


@source_app.command("add", help="Create or replace a source from a YAML/JSON file.")
def source_add(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
) -> None:
    state = _get_state(ctx)
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        source = SourceConfig.model_validate(payload)
    except (yaml.YAMLError, SchemaError) as exc:
        console.print(f"Invalid source configuration: {exc}", style="red")
        raise typer.Exit(code=1)
    try:
        saved = state.repository.upsert_source(source)
    except ValueError as exc:
        console.print(f"Cannot save source: {exc}", style="red")
        raise typer.Exit(code=1)
    console.print(f"Source `{source.source_id}` saved to {saved}", style="green")


@source_app.command("seed", help="Write the built-in sources into an empty registry.")
def source_seed(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    seeded = state.repository.seed_default_sources()
    if not seeded:
        console.print("Registry already has sources; nothing seeded.", style="yellow")
        return
    console.print(_render_sources_table(seeded))


@log_app.command("list", help="List available per-source log files.")
def log_list() -> None:
    logs = list(available_source_logs())
    if not logs:
        console.print("No source logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Show the tail of the global or a source log.")
def log_show(
    name: Optional[str] = typer.Option(None, "--source", help="Source id (global log when empty)."),
    tail: int = typer.Option(100, "--tail", help="Number of lines."),
) -> None:
    base_dir = default_log_dir()
    path = base_dir / "sources" / f"{name}.log" if name else base_dir / "crawler.log"
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log lines yet.", style="dim")
        return
    console.print(f"{'source' if name else 'global'} log · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False, highlight=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
