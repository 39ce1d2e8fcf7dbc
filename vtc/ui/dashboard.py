import threading
import time
from datetime import datetime
from typing import Optional
from rich.live import Live
from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.layout import Layout
from rich.progress_bar import ProgressBar
from rich.text import Text
from vtc.ui.state import UIState
from vtc.domain.models import JobOutcome

OUTCOME_STYLES = {
    JobOutcome.SUCCESS: ("✓", "green"),
    JobOutcome.ERROR: ("✗", "red"),
    JobOutcome.SKIPPED: ("≡", "dim"),
    JobOutcome.REJECTED: ("↺", "yellow"),
    JobOutcome.DRY_RUN: ("○", "cyan"),
    JobOutcome.INTERRUPTED: ("■", "magenta"),
}

PROGRESS_LINES = 3

class Dashboard:
    """Live transcode view: overall progress, active encodes, recent outcomes."""

    def __init__(self, state: UIState, max_active_jobs: int = 8, console: Optional[Console] = None):
        self.state = state
        self.max_active_jobs = max_active_jobs
        self.console = console or Console()
        self._live: Optional[Live] = None
        self._refresh_thread: Optional[threading.Thread] = None
        self._stop_refresh = threading.Event()
        self._ui_lock = threading.Lock()

    # --- Formatters ---

    @staticmethod
    def format_size(size: int) -> str:
        """Format size: 123B, 1.2KB, 45.1MB, 3.2GB."""
        if size == 0:
            return "0B"
        units = ['B', 'KB', 'MB', 'GB', 'TB']
        idx = 0
        val = float(size)
        while val >= 1024.0 and idx < len(units) - 1:
            val /= 1024.0
            idx += 1
        if idx == 0:
            return f"{int(val)}B"
        return f"{val:.1f}{units[idx]}"

    @staticmethod
    def format_time(seconds: Optional[float]) -> str:
        """Format time: 59s, 01m 01s, 1h 01m."""
        if seconds is None:
            return "--:--"
        if seconds < 60:
            return f"{int(seconds)}s"
        if seconds < 3600:
            return f"{int(seconds // 60):02d}m {int(seconds % 60):02d}s"
        return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60):02d}m"

    @staticmethod
    def _sanitize_filename(filename: str, max_len: int = 40) -> str:
        """Truncate filename: prefix…suffix."""
        filename = filename.strip()
        if len(filename) <= max_len:
            return filename
        part_len = (max_len - 1) // 2
        return f"{filename[:part_len]}…{filename[-part_len:]}"

    def _eta_seconds(self) -> Optional[float]:
        with self.state._lock:
            if not self.state.processing_start_time or self.state.aggregate_ms <= 0:
                return None
            elapsed = (datetime.now() - self.state.processing_start_time).total_seconds()
            remaining_ms = max(0, self.state.expected_ms - self.state.aggregate_ms)
            return elapsed * remaining_ms / self.state.aggregate_ms

    # --- Panels ---

    def _generate_progress(self) -> Panel:
        """Progress bar measured in encoded media time, not file count."""
        with self.state._lock:
            header = (
                f"Done: {self.state.done_count}/{self.state.selected_count} • "
                f"Threads: {self.state.parallelism}"
            )
            if self.state.interrupt_requested:
                header += " • [bold magenta]INTERRUPTED[/]"
            elif self.state.finished:
                header += " • [bold green]FINISHED[/]"

            elapsed_str = "--:--"
            if self.state.processing_start_time:
                elapsed = (datetime.now() - self.state.processing_start_time).total_seconds()
                elapsed_str = self.format_time(elapsed)

            total = max(1, self.state.expected_ms)
            bar = ProgressBar(total=total, completed=min(total, self.state.aggregate_ms), width=None)
            pct = self.state.progress_percent
            media_str = f"{self.format_time(self.state.aggregate_ms / 1000)}/{self.format_time(self.state.expected_ms / 1000)}"

        bar_grid = Table.grid(padding=(0, 1))
        bar_grid.add_row(bar, media_str, "•", f"{pct:.1f}%", "•", elapsed_str, "• ETA", self.format_time(self._eta_seconds()))
        return Panel(Group(header, bar_grid), title="PROGRESS", border_style="cyan")

    def _generate_active_jobs_panel(self) -> Panel:
        table = Table.grid(padding=(0, 1), expand=True)
        table.add_column(ratio=3)
        table.add_column(justify="right", width=9)
        table.add_column(justify="right", width=7)
        table.add_column(justify="right", width=9)
        with self.state._lock:
            jobs = self.state.active_jobs[:self.max_active_jobs]
            now = datetime.now()
            for item in jobs:
                started = self.state.job_start_times.get(item.record.rowid)
                elapsed = (now - started).total_seconds() if started else None
                table.add_row(
                    Text(self._sanitize_filename(item.path.name), style="bold"),
                    self.format_size(item.record.file_size),
                    f"{item.progress_percent:.0f}%",
                    self.format_time(elapsed),
                )
            hidden = len(self.state.active_jobs) - len(jobs)
        if hidden > 0:
            table.add_row(Text(f"...+{hidden} more", style="dim"), "", "", "")
        if not jobs:
            table.add_row(Text("idle", style="dim"), "", "", "")
        return Panel(table, title="ACTIVE JOBS", border_style="cyan")

    def _render_activity_item(self, item, outcome: JobOutcome, detail: str) -> RenderableType:
        icon, style = OUTCOME_STYLES.get(outcome, ("?", "white"))
        line = Text()
        line.append(f"{icon} ", style=style)
        line.append(self._sanitize_filename(item.path.name))
        line.append(f"  {outcome.value.lower()}", style=style)
        if detail:
            line.append(f"  {self._sanitize_filename(detail, 60)}", style="dim")
        return line

    def _generate_activity_panel(self) -> Panel:
        rows = [self._render_activity_item(*entry) for entry in self.state.recent_snapshot()]
        if not rows:
            rows = [Text("no activity yet", style="dim")]
        return Panel(Group(*rows), title="ACTIVITY FEED", border_style="cyan")

    def _generate_footer(self) -> RenderableType:
        with self.state._lock:
            text = Text()
            text.append(f"ok {self.state.completed_count}", style="green")
            text.append(f"  err {self.state.failed_count}", style="red")
            text.append(f"  skip {self.state.skipped_count}", style="dim")
            text.append(f"  rejected {self.state.rejected_count}", style="yellow")
            if self.state.dry_run_count:
                text.append(f"  dry-run {self.state.dry_run_count}", style="cyan")
            text.append(f"  saved {self.format_size(self.state.space_saved_bytes)}", style="bold")
        return text

    def create_display(self) -> Layout:
        active_lines = max(1, min(self.max_active_jobs, len(self.state.active_jobs) or 1)) + 2
        recent_lines = (self.state.recent_jobs.maxlen or 5) + 2
        layout = Layout()
        layout.split_column(
            Layout(self._generate_progress(), name="progress", size=PROGRESS_LINES + 1),
            Layout(self._generate_active_jobs_panel(), name="active", size=active_lines),
            Layout(self._generate_activity_panel(), name="activity", size=recent_lines),
            Layout(self._generate_footer(), name="footer", size=1),
        )
        return layout

    def _refresh_loop(self):
        while not self._stop_refresh.is_set():
            if self._live:
                display = self.create_display()
                with self._ui_lock:
                    self._live.update(display)
            time.sleep(0.5)

    def start(self):
        self._live = Live(self.create_display(), console=self.console, refresh_per_second=4)
        self._live.start()
        self._stop_refresh.clear()
        self._refresh_thread = threading.Thread(target=self._refresh_loop, daemon=True)
        self._refresh_thread.start()
        return self

    def stop(self):
        self._stop_refresh.set()
        if self._refresh_thread:
            self._refresh_thread.join(timeout=1.0)
        if self._live:
            # Final update to show INTERRUPTED/FINISHED state
            with self._ui_lock:
                self._live.update(self.create_display())
            self._live.stop()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
