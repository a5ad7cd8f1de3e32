import logging
from pathlib import Path
from typing import Optional

PACKAGE_LOGGER = "vbudget"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

# One run log per process; a second setup call swaps it out.
_run_handler: Optional[logging.Handler] = None


def setup_logging(output_dir: Path, debug: bool = False, log_path: Optional[Path] = None) -> logging.Logger:
    """Attach the run log file to the ``vbudget`` logger and return that logger.

    Only the package's own loggers are configured. The root logger and any
    third-party loggers keep whatever the host application set up, and records
    still propagate to the root.

    Args:
        output_dir: Directory where encoded videos and thumbnails are written
        debug: If True, log at DEBUG (engine commands, brightness samples)
        log_path: Log file location; defaults to ``<output_dir>/vbudget.log``
    """
    global _run_handler

    output_dir.mkdir(parents=True, exist_ok=True)
    log_file = Path(log_path) if log_path else (output_dir / "vbudget.log")
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(PACKAGE_LOGGER)
    if _run_handler is not None:
        logger.removeHandler(_run_handler)
        _run_handler.close()

    _run_handler = logging.FileHandler(log_file, encoding="utf-8")
    _run_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(_run_handler)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    logger.info(f"RUN_LOG: {log_file} debug={'ON' if debug else 'OFF'}")
    return logger
