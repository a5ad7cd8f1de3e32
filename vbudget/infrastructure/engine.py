import logging
import queue
import re
import shutil
import subprocess
import tempfile
import threading
import time
from collections import deque
from pathlib import Path
from typing import Callable, List, Optional
from vbudget.domain.errors import (
    EngineError,
    EngineLoadError,
    EngineMemoryFault,
    MEMORY_FAULT_PATTERN,
    OperationTimeout,
)

ProgressCallback = Callable[[float], None]

# Regex to parse 'time=00:00:00.00' from ffmpeg output
TIME_REGEX = re.compile(r"time=(\d+):(\d+):(\d+(?:\.\d+)?)")


class FFmpegEngine:
    """A single ffmpeg instance bound to a private scratch directory.

    The scratch directory is the engine's file namespace: inputs are written
    into it, ffmpeg runs with it as working directory and outputs are read back
    from it. ``terminate()`` kills a running process and removes the directory
    together with anything a crashed job left behind.

    The instance is not reentrant; callers serialize access through
    ``EngineLifecycleManager``.
    """

    CHUNK_SIZE = 1024 * 1024

    def __init__(self, binary: str = "ffmpeg", scratch_root: Optional[Path] = None):
        self.binary = binary
        self.scratch_root = Path(scratch_root) if scratch_root else None
        self.workspace: Optional[Path] = None
        self.version: Optional[str] = None
        self._process: Optional[subprocess.Popen] = None
        self.logger = logging.getLogger(__name__)

    @property
    def loaded(self) -> bool:
        return self.workspace is not None

    def load(self, timeout: float) -> None:
        try:
            result = subprocess.run(
                [self.binary, "-hide_banner", "-version"],
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError:
            raise EngineLoadError(f"ffmpeg binary not found: {self.binary}")
        except subprocess.TimeoutExpired:
            raise OperationTimeout("Engine load", timeout)
        if result.returncode != 0:
            raise EngineLoadError(f"ffmpeg failed to start (code {result.returncode}): {result.stderr.strip()}")

        if self.scratch_root:
            self.scratch_root.mkdir(parents=True, exist_ok=True)
        self.workspace = Path(tempfile.mkdtemp(prefix="vbudget_engine_", dir=self.scratch_root))
        self.version = (result.stdout.splitlines() or ["unknown"])[0]
        self.logger.debug(f"ENGINE_LOADED: {self.version} workspace={self.workspace}")

    def _path(self, name: str) -> Path:
        if self.workspace is None:
            raise EngineError("Engine is not loaded")
        if not name or Path(name).name != name:
            raise ValueError(f"Invalid engine file name: {name!r}")
        return self.workspace / name

    def write_file(self, name: str, source: Path, timeout: float) -> int:
        """Copies ``source`` into the engine namespace, checking the deadline between chunks."""
        target = self._path(name)
        deadline = time.monotonic() + timeout
        written = 0
        with open(source, "rb") as src, open(target, "wb") as dst:
            while True:
                if time.monotonic() > deadline:
                    raise OperationTimeout(f"Writing {name}", timeout)
                chunk = src.read(self.CHUNK_SIZE)
                if not chunk:
                    break
                dst.write(chunk)
                written += len(chunk)
        return written

    def read_file(self, name: str, timeout: float) -> bytes:
        path = self._path(name)
        if not path.exists():
            raise EngineError(f"Engine output {name} was not produced")
        deadline = time.monotonic() + timeout
        chunks = []
        with open(path, "rb") as f:
            while True:
                if time.monotonic() > deadline:
                    raise OperationTimeout(f"Reading {name}", timeout)
                chunk = f.read(self.CHUNK_SIZE)
                if not chunk:
                    break
                chunks.append(chunk)
        return b"".join(chunks)

    def delete_file(self, name: str) -> None:
        """Removes a file from the namespace; raises FileNotFoundError if absent."""
        self._path(name).unlink()

    def exec(
        self,
        args: List[str],
        timeout: float,
        on_progress: Optional[ProgressCallback] = None,
        total_duration: Optional[float] = None,
    ) -> None:
        """Runs ffmpeg inside the namespace. The process is killed once ``timeout`` elapses.

        ``on_progress`` receives a 0.0-1.0 fraction and is only referenced for the
        duration of this call.
        """
        if self.workspace is None:
            raise EngineError("Engine is not loaded")
        if self._process is not None:
            raise EngineError("Engine is busy")

        cmd = [self.binary, "-hide_banner", "-nostdin", *args]
        self.logger.debug(f"ENGINE_EXEC: {' '.join(cmd)}")

        process = subprocess.Popen(
            cmd,
            cwd=str(self.workspace),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            universal_newlines=True,
            bufsize=1,
        )
        self._process = process

        output_queue: "queue.Queue[Optional[str]]" = queue.Queue()

        def _reader():
            if not process.stdout:
                output_queue.put(None)
                return
            for line in process.stdout:
                output_queue.put(line)
            output_queue.put(None)

        reader_thread = threading.Thread(target=_reader, daemon=True)
        reader_thread.start()

        tail: deque = deque(maxlen=20)
        deadline = time.monotonic() + timeout
        try:
            while True:
                if time.monotonic() > deadline:
                    self._kill(process)
                    raise OperationTimeout("Encode", timeout)

                try:
                    line = output_queue.get(timeout=0.1)
                except queue.Empty:
                    if process.poll() is not None and not reader_thread.is_alive():
                        break
                    continue

                if line is None:
                    break
                tail.append(line.rstrip())

                match = TIME_REGEX.search(line)
                if match and on_progress and total_duration and total_duration > 0:
                    h, m, s = map(float, match.groups())
                    current_seconds = h * 3600 + m * 60 + s
                    on_progress(min(1.0, current_seconds / total_duration))

            remaining = max(0.1, deadline - time.monotonic())
            try:
                process.wait(timeout=remaining)
            except subprocess.TimeoutExpired:
                self._kill(process)
                raise OperationTimeout("Encode", timeout)
        finally:
            self._process = None

        if process.returncode != 0:
            details = " | ".join(line for line in tail if line)[-500:]
            message = f"ffmpeg exited with code {process.returncode}: {details}"
            if MEMORY_FAULT_PATTERN.search(details):
                raise EngineMemoryFault(message, returncode=process.returncode)
            raise EngineError(message, returncode=process.returncode)

    def _kill(self, process: subprocess.Popen) -> None:
        process.kill()
        try:
            process.wait(timeout=3)
        except subprocess.TimeoutExpired:
            self.logger.warning(f"ffmpeg pid={process.pid} did not exit after kill")

    def terminate(self) -> None:
        process = self._process
        if process is not None and process.poll() is None:
            self._kill(process)
        self._process = None
        workspace, self.workspace = self.workspace, None
        if workspace is not None and workspace.exists():
            shutil.rmtree(workspace)
