import pytest
import json
import subprocess
from pathlib import Path
from unittest.mock import patch
from vbudget.domain.errors import InputError, OperationTimeout
from vbudget.infrastructure.ffprobe import FFprobeAdapter


def _probe_output(fmt=None, stream_extra=None):
    stream = {
        "index": 0,
        "codec_name": "h264",
        "codec_type": "video",
        "width": 1920,
        "height": 1080,
    }
    stream.update(stream_extra or {})
    return {"streams": [stream], "format": fmt if fmt is not None else {"duration": "10.0"}}


def test_ffprobe_reads_format_duration():
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.stdout = json.dumps(_probe_output())
        mock_run.return_value.returncode = 0

        adapter = FFprobeAdapter()
        duration = adapter.probe_duration(Path("test.mp4"))

        assert duration == 10.0
        cmd = mock_run.call_args[0][0]
        assert "-show_format" in cmd
        assert cmd[-1] == "test.mp4"


def test_ffprobe_passes_timeout():
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.stdout = json.dumps(_probe_output())
        mock_run.return_value.returncode = 0

        FFprobeAdapter(binary="/opt/ffprobe").probe_duration(Path("test.mp4"), timeout=30.0)

        cmd = mock_run.call_args[0][0]
        assert cmd[0] == "/opt/ffprobe"
        assert mock_run.call_args[1]["timeout"] == 30.0


def test_ffprobe_error_is_input_error():
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.returncode = 1
        mock_run.return_value.stderr = "Invalid data found when processing input"

        with pytest.raises(InputError):
            FFprobeAdapter().probe_duration(Path("test.mp4"))


def test_ffprobe_timeout():
    with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="ffprobe", timeout=30)):
        with pytest.raises(OperationTimeout):
            FFprobeAdapter().probe_duration(Path("test.mp4"), timeout=30.0)


def test_ffprobe_invalid_json():
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.stdout = "not json"
        mock_run.return_value.returncode = 0
        with pytest.raises(InputError):
            FFprobeAdapter().probe_duration(Path("test.mp4"))


def test_ffprobe_no_video_stream():
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.stdout = json.dumps({"streams": [{"codec_type": "audio"}], "format": {}})
        mock_run.return_value.returncode = 0
        with pytest.raises(InputError):
            FFprobeAdapter().probe_duration(Path("song.mp4"))


@pytest.mark.parametrize("fmt, stream_extra, expected", [
    ({"tags": {"DURATION": "00:01:05.500000000"}}, {}, 65.5),
    ({}, {"duration": "12.25"}, 12.25),
    ({}, {"tags": {"DURATION": "00:00:07.000"}}, 7.0),
    ({}, {"duration_ts": 90000, "time_base": "1/9000"}, 10.0),
    ({"size": "1000000", "bit_rate": "800000"}, {}, 10.0),
])
def test_ffprobe_duration_fallbacks(fmt, stream_extra, expected):
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.stdout = json.dumps(_probe_output(fmt, stream_extra))
        mock_run.return_value.returncode = 0
        assert FFprobeAdapter().probe_duration(Path("test.mkv")) == pytest.approx(expected)


def test_probe_duration_zero_is_input_error():
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.stdout = json.dumps(_probe_output({"duration": "0"}))
        mock_run.return_value.returncode = 0
        with pytest.raises(InputError):
            FFprobeAdapter().probe_duration(Path("empty.mp4"))
