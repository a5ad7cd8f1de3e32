import threading
import time
from typing import Iterable, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from vbudget.domain.models import Job, JobStatus
from vbudget.ui.state import UIState


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


def format_time(seconds: Optional[float]) -> str:
    """Format time: 59s, 01m 01s, 1h 01m."""
    if seconds is None:
        return "--:--"
    if seconds < 60:
        return f"{int(seconds)}s"
    if seconds < 3600:
        return f"{int(seconds // 60):02d}m {int(seconds % 60):02d}s"
    return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60):02d}m"


_STATUS_STYLES = {
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
    JobStatus.PROCESSING: "cyan",
    JobStatus.PENDING: "dim",
}


class Dashboard:
    """Live console panel: active job, wave and engine status, recent results."""

    def __init__(self, state: UIState, console: Optional[Console] = None):
        self.state = state
        self.console = console or Console()
        self._live: Optional[Live] = None
        self._refresh_thread: Optional[threading.Thread] = None
        self._stop_refresh = threading.Event()
        self._ui_lock = threading.Lock()

    def create_display(self) -> Panel:
        with self.state._lock:
            header = Text.assemble(
                ("Wave ", "bold"),
                f"{self.state.current_wave}/{self.state.wave_count}  ",
                ("Engine ", "bold"),
                f"{self.state.engine_state.value} (gen {self.state.engine_generation}, resets {self.state.engine_resets})  ",
                ("Done ", "bold green"),
                f"{self.state.completed_count}  ",
                ("Failed ", "bold red"),
                f"{self.state.failed_count}  ",
                ("Queued ", "bold"),
                f"{self.state.queued_count}",
            )
            rows = [header]

            if self.state.active_job is not None:
                rows.append(Text(f"{self.state.active_job.name}  {self.state.active_progress}%"))
                rows.append(ProgressBar(total=100, completed=self.state.active_progress, width=40))

            for job in self.state.recent_jobs:
                style = _STATUS_STYLES.get(job.status, "")
                if job.status == JobStatus.COMPLETED and job.result is not None:
                    detail = f"{format_size(job.result.encoded_size_bytes)} @ {job.result.achieved_bitrate_kbps}kbps"
                elif job.error is not None:
                    detail = f"{job.error.kind}: {job.error.message}"
                else:
                    detail = ""
                rows.append(Text(f"{job.status.value:<10} {job.name}  {detail}", style=style))

            if self.state.last_action:
                rows.append(Text(self.state.last_action, style="dim"))

        return Panel(Group(*rows), title="vbudget", border_style="blue")

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
            self._live.update(self.create_display())
            self._live.stop()
            self._live = None

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


def build_summary_table(jobs: Iterable[Job]) -> Table:
    """Per-job results table printed after a run."""
    table = Table(title="vbudget summary")
    table.add_column("File")
    table.add_column("Status")
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    table.add_column("Bitrate", justify="right")
    table.add_column("Thumbs", justify="right")
    table.add_column("Notes")

    total_in = total_out = completed = failed = 0
    for job in jobs:
        style = _STATUS_STYLES.get(job.status, "")
        output = bitrate = thumbs = "-"
        notes = ""
        if job.status == JobStatus.COMPLETED and job.result is not None:
            completed += 1
            total_in += job.size_bytes
            total_out += job.result.encoded_size_bytes
            output = format_size(job.result.encoded_size_bytes)
            bitrate = f"{job.result.achieved_bitrate_kbps}kbps"
            thumbs = str(len(job.result.thumbnails))
            if job.result.size_budget_exceeded:
                notes = f"over budget ({format_size(job.config.max_limit_bytes)} ceiling)"
        elif job.status == JobStatus.FAILED:
            failed += 1
            if job.error is not None:
                notes = f"{job.error.kind}: {job.error.message}"
        table.add_row(
            job.name,
            Text(job.status.value, style=style),
            format_size(job.size_bytes),
            output,
            bitrate,
            thumbs,
            notes,
        )

    table.caption = (
        f"completed={completed} failed={failed} "
        f"input={format_size(total_in)} output={format_size(total_out)}"
    )
    return table
