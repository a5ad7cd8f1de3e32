import typer
from pathlib import Path
from typing import List, Optional
from pydantic import ValidationError
from rich.console import Console

from vbudget.config.loader import load_config
from vbudget.config.models import AppConfig, OptimizationConfig, ThumbnailAspectRatio
from vbudget.domain.errors import VBudgetError
from vbudget.domain.models import JobStatus
from vbudget.infrastructure.event_bus import EventBus
from vbudget.infrastructure.file_scanner import FileScanner
from vbudget.infrastructure.logging import setup_logging
from vbudget.infrastructure.output_writer import OutputWriter
from vbudget.pipeline.orchestrator import build_orchestrator
from vbudget.ui.dashboard import Dashboard, build_summary_table
from vbudget.ui.manager import UIManager
from vbudget.ui.state import UIState

app = typer.Typer(help="vbudget - encode videos to a byte budget and pick thumbnails")


def _default_output_dir(first_input: Path) -> Path:
    first_input = first_input.resolve()
    base = first_input if first_input.is_dir() else first_input.parent / first_input.stem
    return base.with_name(f"{base.name}_out")


@app.command()
def optimize(
    paths: List[Path] = typer.Argument(..., help="Video files or directories to process"),
    config_path: Path = typer.Option(Path("conf/vbudget.yaml"), "--config", "-c", help="Path to YAML config"),
    output_dir: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory (default: <input>_out)"),
    wave_size: Optional[int] = typer.Option(None, "--wave-size", help="Jobs per wave between engine resets"),
    target_size: Optional[int] = typer.Option(None, "--target-size", help="Target output size in bytes"),
    max_size: Optional[int] = typer.Option(None, "--max-size", help="Hard output size ceiling in bytes"),
    aspect: Optional[ThumbnailAspectRatio] = typer.Option(None, "--aspect", help="Thumbnail aspect ratio"),
    faces: Optional[bool] = typer.Option(None, "--faces/--no-faces", help="Crop thumbnails around detected faces"),
    retry_failed: bool = typer.Option(False, "--retry-failed", help="Retry failed jobs once after the run"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Encode each video under a size budget and extract up to 3 thumbnails."""
    try:
        config = load_config(config_path) if config_path.exists() else AppConfig()
    except (ValidationError, ValueError) as exc:
        typer.secho(f"Error: invalid config {config_path}: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    # Apply CLI overrides
    updates = {}
    if target_size is not None:
        updates["target_size_bytes"] = target_size
    if max_size is not None:
        updates["max_limit_bytes"] = max_size
    if aspect is not None:
        updates["thumbnail_aspect_ratio"] = aspect
    if faces is not None:
        updates["thumbnail_face_detection"] = faces
    try:
        if updates:
            config.optimization = OptimizationConfig(**{**config.optimization.model_dump(), **updates})
        if wave_size is not None:
            if wave_size < 1:
                raise ValueError("--wave-size must be >= 1")
            config.engine = config.engine.model_copy(update={"wave_size": wave_size})
    except (ValidationError, ValueError) as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    if debug:
        config.general.debug = True

    files = FileScanner(config.general.extensions).expand(paths)
    if not files:
        typer.secho(
            f"Error: no video files found (extensions: {', '.join(config.general.extensions)})",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)

    output_dir = output_dir or _default_output_dir(paths[0])
    log_path_value = Path(config.general.log_path) if config.general.log_path else None
    logger = setup_logging(output_dir, debug=config.general.debug, log_path=log_path_value)
    logger.info(f"vbudget started: files={len(files)}, output={output_dir}")
    logger.info(
        f"Config: target={config.optimization.target_size_bytes}B max={config.optimization.max_limit_bytes}B "
        f"width={config.optimization.target_width_px}px wave_size={config.engine.wave_size} "
        f"aspect={config.optimization.thumbnail_aspect_ratio.value} faces={config.optimization.thumbnail_face_detection}"
    )

    bus = EventBus()
    ui_state = UIState()
    UIManager(bus, ui_state)
    orchestrator = build_orchestrator(config, bus)
    console = Console()

    try:
        try:
            orchestrator.lifecycle.load()
        except VBudgetError as exc:
            typer.secho(f"Error: encoding engine failed to load: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        for file_path in files:
            orchestrator.submit_job(file_path)

        try:
            with Dashboard(ui_state, console=console):
                orchestrator.run()
                if retry_failed and any(job.status == JobStatus.FAILED for job in orchestrator.jobs):
                    orchestrator.retry_failed()
        except KeyboardInterrupt:
            dropped = orchestrator.cancel_pending_queue()
            typer.secho(f"\nStopped by user (Ctrl+C); {dropped} pending jobs dropped", fg=typer.colors.YELLOW)
            raise typer.Exit(code=130)

        writer = OutputWriter(output_dir, suffix=config.general.output_suffix)
        for job in orchestrator.jobs:
            try:
                writer.write(job)
            except OSError as exc:
                logger.error(f"Failed to write outputs for {job.name}: {exc}")
                typer.secho(f"Error: could not write outputs for {job.name}: {exc}", fg=typer.colors.RED, err=True)

        console.print(build_summary_table(orchestrator.jobs))
        console.print(f"Outputs written to {output_dir}")
    finally:
        orchestrator.shutdown()


if __name__ == "__main__":
    app()
