import pytest
from pathlib import Path
from pydantic import ValidationError
from vbudget.config.loader import load_config
from vbudget.config.models import (
    AppConfig,
    EngineConfig,
    GeneralConfig,
    MIB,
    OptimizationConfig,
    ThumbnailAspectRatio,
    ThumbnailConfig,
)


def test_optimization_defaults():
    config = OptimizationConfig()
    assert config.target_size_bytes == int(1.5 * MIB)
    assert config.max_limit_bytes == 2 * MIB
    assert config.audio_bitrate_bps == 128_000
    assert config.min_video_bitrate_bps == 300_000
    assert config.target_width_px == 720
    assert config.thumbnail_width_px == 1000
    assert config.thumbnail_offset_seconds == 1.0
    assert config.thumbnail_aspect_ratio == ThumbnailAspectRatio.ORIGINAL
    assert config.thumbnail_face_detection is False


def test_optimization_target_above_max_rejected():
    with pytest.raises(ValidationError):
        OptimizationConfig(target_size_bytes=3 * MIB, max_limit_bytes=2 * MIB)


def test_optimization_target_equal_max_allowed():
    config = OptimizationConfig(target_size_bytes=2 * MIB, max_limit_bytes=2 * MIB)
    assert config.target_size_bytes == config.max_limit_bytes


@pytest.mark.parametrize("field", [
    "target_size_bytes",
    "audio_bitrate_bps",
    "min_video_bitrate_bps",
    "target_width_px",
    "thumbnail_width_px",
    "thumbnail_offset_seconds",
])
def test_optimization_numeric_fields_must_be_positive(field):
    with pytest.raises(ValidationError):
        OptimizationConfig(**{field: 0})


def test_optimization_config_is_frozen():
    config = OptimizationConfig()
    with pytest.raises(ValidationError):
        config.target_size_bytes = 1


def test_aspect_ratio_parsed_from_string():
    config = OptimizationConfig(thumbnail_aspect_ratio="9:16")
    assert config.thumbnail_aspect_ratio == ThumbnailAspectRatio.PORTRAIT


def test_general_extensions_normalized():
    config = GeneralConfig(extensions=["MP4", ".Mov"])
    assert config.extensions == [".mp4", ".mov"]


def test_engine_timeouts():
    config = EngineConfig()
    # 60 + (d / 60) * 120
    assert config.encode_timeout(10) == pytest.approx(80.0)
    assert config.encode_timeout(120) == pytest.approx(300.0)
    # Write: 10s per MiB clamped to [20, 120]
    assert config.write_timeout(0) == 20.0
    assert config.write_timeout(5 * MIB) == 50.0
    assert config.write_timeout(100 * MIB) == 120.0
    # Probe: 30 + 2s per MiB clamped to [30, 120]
    assert config.probe_timeout(0) == 30.0
    assert config.probe_timeout(10 * MIB) == 50.0
    assert config.probe_timeout(1000 * MIB) == 120.0


def test_engine_reset_every_jobs_validation():
    assert EngineConfig().reset_every_jobs is None
    with pytest.raises(ValidationError):
        EngineConfig(reset_every_jobs=0)


def test_thumbnail_window_cannot_exceed_cap():
    with pytest.raises(ValidationError):
        ThumbnailConfig(search_window_seconds=12, max_search_seconds=10)


def test_app_config_defaults():
    config = AppConfig()
    assert config.engine.wave_size == 5
    assert config.engine.max_engine_attempts == 2
    assert config.thumbnails.brightness_threshold == 30
    assert config.thumbnails.jpeg_quality == 90


def test_load_config(config_yaml_path):
    config = load_config(config_yaml_path)
    assert config.general.extensions == [".mp4", ".mov"]
    assert config.general.debug is True
    assert config.optimization.target_size_bytes == MIB
    assert config.optimization.max_limit_bytes == int(1.5 * MIB)
    assert config.optimization.thumbnail_aspect_ratio == ThumbnailAspectRatio.SQUARE
    assert config.optimization.thumbnail_face_detection is True
    assert config.engine.wave_size == 3
    assert config.engine.reset_every_jobs == 10
    assert config.thumbnails.brightness_threshold == 40


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")


def test_load_config_empty_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(path) == AppConfig()


def test_load_config_explicit_bytes_win_over_alias(tmp_path):
    path = tmp_path / "conf.yaml"
    path.write_text("optimization:\n  target_size_mb: 1.0\n  target_size_bytes: 1000\n")
    assert load_config(path).optimization.target_size_bytes == 1000


def test_shipped_config_loads():
    repo_root = Path(__file__).resolve().parents[2]
    config = load_config(repo_root / "conf" / "vbudget.yaml")
    assert config.optimization == OptimizationConfig()
    assert config.engine.wave_size == 5
