"""
Configuration loader for the tracking service.
"""

import yaml
from pathlib import Path

STORAGE_BACKENDS = ("none", "memory", "file")
CONTENT_ID_CONTEXTS = ("client", "server")


def load_config(config_path: str = "config/tracking.yaml") -> dict:
    """Load and validate tracking configuration from YAML."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path, "r") as f:
        config = yaml.safe_load(f) or {}

    _validate_config(config)
    return config


def _validate_config(config: dict) -> None:
    """Validate required configuration fields."""
    required_sections = ["tracker", "content_id", "storage"]
    for section in required_sections:
        if section not in config:
            raise ValueError(f"Missing required config section: {section}")

    context = config["content_id"].get("context", "server")
    if context not in CONTENT_ID_CONTEXTS:
        raise ValueError(f"content_id.context must be one of {CONTENT_ID_CONTEXTS}")

    backend = config["storage"].get("backend", "none")
    if backend not in STORAGE_BACKENDS:
        raise ValueError(f"storage.backend must be one of {STORAGE_BACKENDS}")
    if backend == "file" and "directory" not in config["storage"]:
        raise ValueError("storage.directory is required for the file backend")

    tracker = config["tracker"]
    for key in ("max_events", "window_seconds", "retention_days", "min_sample"):
        if key in tracker and (not isinstance(tracker[key], int) or tracker[key] <= 0):
            raise ValueError(f"tracker.{key} must be a positive integer")
