import pytest
import yaml
from pathlib import Path
from unittest.mock import MagicMock
from vbudget.config.models import AppConfig, MIB
from vbudget.domain.errors import EngineError
from vbudget.infrastructure.event_bus import EventBus
from vbudget.pipeline.budget import EncodeBudgetController
from vbudget.pipeline.job_pipeline import JobPipeline
from vbudget.pipeline.lifecycle import EngineLifecycleManager
from vbudget.pipeline.scheduler import WaveScheduler

# ============================================================================
# Fake engine
# ============================================================================


class FakeEngine:
    """In-memory stand-in for FFmpegEngine.

    ``behavior(args)`` decides what each ``exec`` produces: it returns the
    output size in bytes or raises.
    """

    def __init__(self, behavior=None):
        self.behavior = behavior or (lambda args: 1000)
        self.files = {}
        self.exec_calls = []
        self.deleted = []
        self.load_timeouts = []
        self.loaded = False
        self.terminated = False

    def load(self, timeout):
        self.load_timeouts.append(timeout)
        self.loaded = True

    def write_file(self, name, source, timeout):
        data = Path(source).read_bytes()
        self.files[name] = data
        return len(data)

    def read_file(self, name, timeout):
        if name not in self.files:
            raise EngineError(f"Engine output {name} was not produced")
        return self.files[name]

    def delete_file(self, name):
        if name not in self.files:
            raise FileNotFoundError(name)
        del self.files[name]
        self.deleted.append(name)

    def exec(self, args, timeout, on_progress=None, total_duration=None):
        self.exec_calls.append({"args": list(args), "timeout": timeout, "total_duration": total_duration})
        size = self.behavior(args)
        if on_progress:
            on_progress(0.5)
            on_progress(1.0)
        self.files[args[-1]] = b"\0" * size

    def terminate(self):
        self.terminated = True
        self.loaded = False
        self.files.clear()


class FakeEngineFactory:
    """Creates FakeEngines sharing one ``behavior``; keeps every instance for assertions."""

    def __init__(self, behavior=None):
        self.behavior = behavior or (lambda args: 1000)
        self.engines = []

    def __call__(self):
        engine = FakeEngine(lambda args: self.behavior(args))
        self.engines.append(engine)
        return engine


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """AppConfig with reset delays disabled so tests never sleep."""
    return AppConfig(
        engine={
            "teardown_delay_seconds": 0.0,
            "settle_seconds": 0.0,
            "wave_size": 5,
        },
    )


@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "vbudget.yaml"

    content = {
        'general': {
            'extensions': ['mp4', 'MOV'],
            'debug': True,
        },
        'optimization': {
            'target_size_mb': 1.0,
            'max_limit_mb': 1.5,
            'thumbnail_aspect_ratio': '1:1',
            'thumbnail_face_detection': True,
        },
        'engine': {
            'wave_size': 3,
            'reset_every_jobs': 10,
        },
        'thumbnails': {
            'brightness_threshold': 40,
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()


@pytest.fixture
def recorded_events(event_bus):
    """Every event published on ``event_bus``, in order."""
    events = []
    original_publish = event_bus.publish

    def publish(event):
        events.append(event)
        original_publish(event)

    event_bus.publish = publish
    return events

# ============================================================================
# Engine / pipeline Fixtures
# ============================================================================

@pytest.fixture
def engine_factory():
    return FakeEngineFactory()


@pytest.fixture
def fake_engine():
    engine = FakeEngine()
    engine.load(timeout=1.0)
    return engine


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def lifecycle(engine_factory, sample_config, event_bus, sleeps):
    return EngineLifecycleManager(engine_factory, sample_config.engine, event_bus=event_bus, sleep=sleeps.append)


@pytest.fixture
def prober():
    mock = MagicMock()
    mock.probe_duration.return_value = 10.0
    return mock


@pytest.fixture
def thumbnail_service():
    mock = MagicMock()
    mock.generate.return_value = []
    return mock


@pytest.fixture
def job_pipeline(lifecycle, prober, thumbnail_service, event_bus, sample_config):
    return JobPipeline(
        lifecycle=lifecycle,
        prober=prober,
        budget_controller=EncodeBudgetController(sample_config.engine),
        thumbnail_service=thumbnail_service,
        event_bus=event_bus,
        engine_config=sample_config.engine,
    )


@pytest.fixture
def scheduler(lifecycle, event_bus):
    return WaveScheduler(lifecycle, event_bus, wave_size=5)

# ============================================================================
# File System Fixtures
# ============================================================================

@pytest.fixture
def test_input_dir(tmp_path):
    """Creates a test input directory."""
    input_dir = tmp_path / "input"
    input_dir.mkdir()
    return input_dir


@pytest.fixture
def dummy_video_files(test_input_dir):
    """Creates dummy video files in test input directory."""
    files = []

    for i in range(3):
        f = test_input_dir / f"video{i}.mp4"
        f.write_bytes(b"dummy video content " * 100)  # ~2KB
        files.append(f)

    # Create a subdirectory with a file
    subdir = test_input_dir / "subdir"
    subdir.mkdir()
    f = subdir / "subvideo.mov"
    f.write_bytes(b"dummy video content " * 100)
    files.append(f)

    # Not a video
    (test_input_dir / "notes.txt").write_text("ignore me")

    return files


@pytest.fixture
def make_job(tmp_path, sample_config):
    """Builds PENDING jobs backed by small real files."""
    from vbudget.domain.models import Job

    counter = {"n": 0}

    def _make(name=None, config=None, content=b"x" * 2048):
        counter["n"] += 1
        name = name or f"clip{counter['n']:02d}.mp4"
        path = tmp_path / "jobs" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return Job(
            id=f"job{counter['n']:02d}",
            source_path=path,
            size_bytes=len(content),
            config=config or sample_config.optimization,
        )

    return _make


# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (need a real ffmpeg binary)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
