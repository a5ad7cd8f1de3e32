import yaml
from pathlib import Path
from .models import AppConfig, MIB


def _apply_megabyte_aliases(section: dict) -> None:
    # Human-friendly aliases: target_size_mb / max_limit_mb
    for alias, field in (("target_size_mb", "target_size_bytes"), ("max_limit_mb", "max_limit_bytes")):
        if alias in section:
            value = section.pop(alias)
            section.setdefault(field, int(float(value) * MIB))


def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    optimization = data.get("optimization")
    if isinstance(optimization, dict):
        _apply_megabyte_aliases(optimization)

    return AppConfig(**data)
