import subprocess
import json
import math
from pathlib import Path
from typing import Dict, Any, Optional, Tuple
from vbudget.domain.errors import InputError, OperationTimeout


class FFprobeAdapter:
    """Wrapper around ffprobe to read the duration of a source."""

    def __init__(self, binary: str = "ffprobe"):
        self.binary = binary

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    @classmethod
    def _parse_duration_tag(cls, value: Any) -> float:
        if value is None:
            return 0.0
        text = str(value).strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            pass
        parts = text.split(":")
        if len(parts) not in (2, 3):
            return 0.0
        try:
            parts_f = [float(p) for p in parts]
        except ValueError:
            return 0.0
        seconds = 0.0
        for part in parts_f:
            seconds = seconds * 60 + part
        return seconds

    @classmethod
    def _parse_time_base_duration(cls, duration_ts: Any, time_base: Any) -> float:
        if duration_ts is None or time_base is None or "/" not in str(time_base):
            return 0.0
        num_text, den_text = str(time_base).split("/", 1)
        den = cls._to_float(den_text)
        if den == 0:
            return 0.0
        ticks = cls._to_float(duration_ts)
        if ticks <= 0:
            return 0.0
        return ticks * cls._to_float(num_text) / den

    def _resolve_duration(self, fmt: Dict[str, Any], video_stream: Dict[str, Any]) -> float:
        # Fallback order: format.duration, format tags, stream.duration, stream tags,
        # duration_ts/time_base, size/bit_rate
        duration = self._to_float(fmt.get("duration"))
        if duration <= 0:
            tags = fmt.get("tags", {}) or {}
            duration = self._parse_duration_tag(tags.get("DURATION") or tags.get("duration"))
        if duration <= 0:
            duration = self._to_float(video_stream.get("duration"))
        if duration <= 0:
            tags = video_stream.get("tags", {}) or {}
            duration = self._parse_duration_tag(tags.get("DURATION") or tags.get("duration"))
        if duration <= 0:
            duration = self._parse_time_base_duration(video_stream.get("duration_ts"), video_stream.get("time_base"))
        if duration <= 0:
            bit_rate = self._to_float(fmt.get("bit_rate") or video_stream.get("bit_rate"))
            size = self._to_float(fmt.get("size"))
            if bit_rate > 0 and size > 0:
                duration = (size * 8) / bit_rate
        return duration

    def _probe(self, file_path: Path, timeout: Optional[float]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Runs ffprobe; returns the format section and the first video stream."""
        cmd = [
            self.binary,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path)
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired:
            raise OperationTimeout(f"Metadata probe of {file_path.name}", timeout or 0.0)
        if result.returncode != 0:
            raise InputError(f"ffprobe failed for {file_path.name}: {result.stderr.strip() or 'unreadable file'}")

        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise InputError(f"ffprobe returned invalid JSON for {file_path.name}: {e}")

        video_stream = next((s for s in data.get("streams", []) if s.get("codec_type") == "video"), None)
        if not video_stream:
            raise InputError(f"No video stream found in {file_path.name}")

        return data.get("format", {}) or {}, video_stream

    def probe_duration(self, file_path: Path, timeout: Optional[float] = None) -> float:
        """Returns a finite, positive duration in seconds or raises InputError."""
        fmt, video_stream = self._probe(file_path, timeout)
        duration = self._resolve_duration(fmt, video_stream)
        if not math.isfinite(duration) or duration <= 0:
            raise InputError(
                f"Could not determine the duration of {file_path.name}; the file may be corrupted"
            )
        return duration
