import io

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vbudget.domain.models import JobResult, JobStatus
from vbudget.ui.dashboard import Dashboard, build_summary_table, format_size, format_time
from vbudget.ui.state import UIState


def _render(renderable) -> str:
    console = Console(file=io.StringIO(), width=160, color_system=None)
    console.print(renderable)
    return console.file.getvalue()


def test_format_helpers():
    assert format_size(0) == "0B"
    assert format_size(512) == "512B"
    assert format_size(1024) == "1.0KB"
    assert format_size(int(1.5 * 1024 * 1024)) == "1.5MB"
    assert format_time(None) == "--:--"
    assert format_time(59) == "59s"
    assert format_time(61) == "01m 01s"
    assert format_time(3661) == "1h 01m"


def test_dashboard_context_manager():
    dashboard = Dashboard(UIState())
    assert hasattr(dashboard, "__enter__")
    assert hasattr(dashboard, "__exit__")


def test_create_display_shows_active_and_recent(make_job):
    state = UIState()
    active = make_job("active.mp4")
    state.set_active_job(active)
    state.active_progress = 37
    failed = make_job("broken.mp4")
    failed.mark_failed("input_error", "corrupt")
    state.add_failed_job(failed)
    state.current_wave, state.wave_count = 1, 2

    panel = Dashboard(state).create_display()
    assert isinstance(panel, Panel)

    text = _render(panel)
    assert "Wave 1/2" in text
    assert "active.mp4  37%" in text
    assert "broken.mp4" in text
    assert "input_error: corrupt" in text


def test_start_stop_with_quiet_console():
    console = Console(file=io.StringIO(), force_terminal=False)
    dashboard = Dashboard(UIState(), console=console)
    with dashboard:
        assert dashboard._live is not None
    assert dashboard._live is None


def test_summary_table(make_job):
    done = make_job("done.mp4", content=b"x" * 4096)
    done.status = JobStatus.COMPLETED
    done.result = JobResult(
        encoded_bytes=b"",
        encoded_size_bytes=2048,
        achieved_bitrate_kbps=1130,
        duration_seconds=10.0,
        size_budget_exceeded=True,
    )
    failed = make_job("bad.mp4")
    failed.mark_failed("timeout", "Encode timed out after 80s")

    table = build_summary_table([done, failed])
    assert isinstance(table, Table)
    assert table.row_count == 2
    assert table.caption == "completed=1 failed=1 input=4.0KB output=2.0KB"

    text = _render(table)
    assert "1130kbps" in text
    assert "over budget (2.0MB ceiling)" in text
    assert "timeout: Encode timed out after 80s" in text
