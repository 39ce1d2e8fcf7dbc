import typer
import yaml
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ValidationError
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from vtc.config.loader import load_config
from vtc.config.models import AppConfig
from vtc.domain.errors import LedgerError, PoolConstructionFailed
from vtc.domain.events import FileProbed, FilesDiscovered
from vtc.domain.models import FileStatus, HwMode, ScanSummary, TranscodeSummary
from vtc.infrastructure.logging import setup_logging
from vtc.infrastructure.event_bus import EventBus
from vtc.infrastructure.file_scanner import FileScanner
from vtc.infrastructure.ffprobe import FFprobeAdapter
from vtc.infrastructure.ffmpeg import FFmpegAdapter
from vtc.infrastructure.housekeeping import HousekeepingService
from vtc.infrastructure.ledger import FileLedger, LedgerFilter
from vtc.pipeline.collector import Collector
from vtc.pipeline.orchestrator import Orchestrator
from vtc.ui.state import UIState
from vtc.ui.manager import UIManager
from vtc.ui.dashboard import Dashboard

app = typer.Typer(help="VTC (Video Transcode Catalog) - catalog videos and re-encode them to AV1")


def _fail(message: str, code: int = 1):
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _override(section: BaseModel, **overrides) -> BaseModel:
    """Returns a re-validated copy of a config section with non-None overrides applied."""
    data = section.model_dump()
    data.update({key: value for key, value in overrides.items() if value is not None})
    return type(section).model_validate(data)


def _prepare(config_path: Optional[Path], db: Optional[Path], debug: bool) -> AppConfig:
    """Loads config, applies shared overrides and initialises logging."""
    try:
        config = load_config(config_path)
        config.general = _override(config.general, database=str(db) if db else None, debug=debug or None)
    except (FileNotFoundError, ValidationError, ValueError, yaml.YAMLError) as exc:
        _fail(f"Invalid config: {exc}")

    db_path = Path(config.general.database)
    log_path = Path(config.general.log_path) if config.general.log_path else None
    logger = setup_logging(db_path.resolve().parent, debug=config.general.debug, log_path=log_path)
    logger.info(f"VTC started: database={db_path}, debug={config.general.debug}")
    return config


def _print_scan_summary(summary: ScanSummary):
    typer.echo(
        f"Found {summary.found} files: {summary.already_known} already known, "
        f"{summary.probed} probed, {summary.probe_failed} failed to probe, "
        f"{summary.inserted} added to the ledger."
    )


def _print_transcode_summary(summary: TranscodeSummary):
    typer.echo(
        f"Selected {summary.selected}: {summary.succeeded} encoded, {summary.errored} failed, "
        f"{summary.skipped} skipped, {summary.rejected} not smaller, "
        f"{summary.dry_run} dry-run, {summary.interrupted} interrupted."
    )
    typer.echo(f"Progress: {summary.progress_ms}/{summary.expected_ms} ms of media")
    for path, message in summary.errors:
        typer.secho(f"  ✗ {path}: {message}", fg=typer.colors.RED, err=True)


@app.command()
def scan(
    path: Path = typer.Argument(..., help="Directory or single file to catalog"),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", "-e", help="Skip paths containing this substring (repeatable)"),
    min_size: Optional[int] = typer.Option(None, "--min-size", help="Minimum input size in bytes"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to the ledger database"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Discover video files under PATH, probe them and record them as pending."""
    config = _prepare(config_path, db, debug)
    try:
        config.scan = _override(config.scan, exclude=exclude or None, min_size_bytes=min_size)
    except ValidationError as exc:
        _fail(str(exc))

    if not path.exists():
        _fail(f"Path not found: {path}")

    try:
        with FileLedger(Path(config.general.database)) as ledger:
            bus = EventBus()
            scanner = FileScanner(
                extensions=config.scan.extensions,
                min_size_bytes=config.scan.min_size_bytes,
                exclude=config.scan.exclude,
                tmp_marker=config.general.tmp_marker,
                output_marker=config.general.output_marker,
            )
            collector = Collector(
                ledger=ledger,
                file_scanner=scanner,
                ffprobe_adapter=FFprobeAdapter(),
                event_bus=bus,
                probe_workers=config.scan.probe_workers,
                debug=config.general.debug,
            )

            with Progress(
                TextColumn("[cyan]Probing"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=Console(stderr=True),
                transient=True,
            ) as progress:
                task = progress.add_task("probe", total=None)
                bus.subscribe(FilesDiscovered, lambda e: progress.update(task, total=e.to_probe))
                bus.subscribe(FileProbed, lambda e: progress.advance(task))
                summary = collector.run(path)

        _print_scan_summary(summary)

    except KeyboardInterrupt:
        typer.secho("\n✓ Scan stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)
    except LedgerError as exc:
        _fail(str(exc))


@app.command()
def transcode(
    quality: Optional[int] = typer.Option(None, "--quality", "-q", help="Quality / CRF value (0-63)"),
    effort: Optional[int] = typer.Option(None, "--effort", "-e", help="Encoder effort (0 = slowest, 13 = fastest)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Log ffmpeg commands without running them"),
    replace: bool = typer.Option(False, "--replace", help="Replace originals instead of writing *_av1 sidecars"),
    hw: Optional[HwMode] = typer.Option(None, "--hw", help="Encoder backend"),
    parallel: Optional[int] = typer.Option(None, "--parallel", "-j", help="Number of concurrent encodes"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Process at most N files"),
    order: Optional[str] = typer.Option(None, "--order", help="Queue order (size-desc, difficulty, name)"),
    record_rejects: bool = typer.Option(False, "--record-rejects", help="Mark files whose output is not smaller as skipped"),
    no_ui: bool = typer.Option(False, "--no-ui", help="Disable the live dashboard"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to the ledger database"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Re-encode pending ledger entries to AV1, largest first."""
    config = _prepare(config_path, db, debug)
    try:
        config.transcode = _override(
            config.transcode,
            quality=quality,
            effort=effort,
            hw_mode=hw,
            parallelism=parallel,
            limit=limit,
            order=order,
            dry_run=dry_run or None,
            replace=replace or None,
            record_rejects=record_rejects or None,
        )
        if no_ui:
            config.ui = _override(config.ui, enabled=False)
    except ValidationError as exc:
        _fail(str(exc))

    try:
        with FileLedger(Path(config.general.database)) as ledger:
            bus = EventBus()
            orchestrator = Orchestrator(
                config=config,
                ledger=ledger,
                ffmpeg_adapter=FFmpegAdapter(),
                event_bus=bus,
            )
            if config.ui.enabled:
                ui_state = UIState(activity_feed_max_items=config.ui.recent_max_items)
                UIManager(bus, ui_state)
                with Dashboard(ui_state, max_active_jobs=config.ui.active_jobs_max_display):
                    summary = orchestrator.run()
            else:
                summary = orchestrator.run()

        _print_transcode_summary(summary)

    except KeyboardInterrupt:
        # Ctrl+C was already handled by orchestrator - just exit gracefully
        typer.secho("\n✓ Transcode stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)
    except (LedgerError, PoolConstructionFailed) as exc:
        _fail(str(exc))


@app.command()
def status(
    limit: int = typer.Option(20, "--limit", help="Rows to list (0 for counts only)"),
    status_filter: Optional[FileStatus] = typer.Option(None, "--status", case_sensitive=False, help="Only list rows with this status"),
    reset_errors: bool = typer.Option(False, "--reset-errors", help="Return failed rows to pending"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to the ledger database"),
):
    """Show ledger counts and the largest matching rows."""
    config = _prepare(None, db, False)
    console = Console()
    try:
        with FileLedger(Path(config.general.database)) as ledger:
            if reset_errors:
                reset = ledger.reset_errors()
                typer.echo(f"Reset {reset} failed rows to pending.")

            counts = ledger.counts()
            typer.echo(" • ".join(f"{s.value.lower()}: {counts[s]}" for s in FileStatus))

            if limit <= 0:
                return
            records = ledger.list(LedgerFilter(
                limit=limit,
                statuses=[status_filter] if status_filter else None,
            ))
            table = Table(title="Ledger", show_lines=False)
            table.add_column("Status")
            table.add_column("Size", justify="right")
            table.add_column("Codec")
            table.add_column("Duration", justify="right")
            table.add_column("Path", overflow="fold")
            table.add_column("Error", style="red", min_width=10)
            for record in records:
                info = record.probe_info
                table.add_row(
                    record.status.value.lower(),
                    Dashboard.format_size(record.file_size),
                    info.codec if info else "",
                    Dashboard.format_time(info.duration) if info else "",
                    str(record.path),
                    record.error_message or "",
                )
            console.print(table)
    except LedgerError as exc:
        _fail(str(exc))


@app.command()
def clean(
    path: Path = typer.Argument(..., help="Directory to clean"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
):
    """Remove temporary outputs left behind by interrupted transcodes."""
    if not path.is_dir():
        _fail(f"Not a directory: {path}")
    config = _prepare(config_path, None, False)
    removed = HousekeepingService(tmp_marker=config.general.tmp_marker).cleanup_temp_files(path)
    typer.echo(f"Removed {removed} temporary files.")


if __name__ == "__main__":
    app()
