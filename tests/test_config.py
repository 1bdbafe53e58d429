from pathlib import Path

import pytest
import yaml

from pixel_tracking.config import load_config

REPO_CONFIG = Path(__file__).resolve().parent.parent / "config" / "tracking.yaml"


def write_config(tmp_path, config: dict) -> str:
    path = tmp_path / "tracking.yaml"
    path.write_text(yaml.safe_dump(config))
    return str(path)


def base_config() -> dict:
    return {
        "tracker": {"max_events": 100},
        "content_id": {"context": "server"},
        "storage": {"backend": "memory"},
    }


def test_repository_config_is_valid():
    config = load_config(str(REPO_CONFIG))
    assert config["tracker"]["max_events"] == 100
    assert config["tracker"]["window_seconds"] == 300
    assert config["tracker"]["low_rate_threshold"] == 80.0
    assert config["content_id"]["context"] == "server"


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "absent.yaml"))


@pytest.mark.parametrize("section", ["tracker", "content_id", "storage"])
def test_missing_section(tmp_path, section):
    config = base_config()
    del config[section]
    with pytest.raises(ValueError, match=section):
        load_config(write_config(tmp_path, config))


def test_file_backend_needs_directory(tmp_path):
    config = base_config()
    config["storage"] = {"backend": "file"}
    with pytest.raises(ValueError, match="storage.directory"):
        load_config(write_config(tmp_path, config))


def test_unknown_backend_and_context(tmp_path):
    config = base_config()
    config["storage"] = {"backend": "redis"}
    with pytest.raises(ValueError, match="storage.backend"):
        load_config(write_config(tmp_path, config))

    config = base_config()
    config["content_id"] = {"context": "mobile"}
    with pytest.raises(ValueError, match="content_id.context"):
        load_config(write_config(tmp_path, config))


def test_tracker_limits_must_be_positive(tmp_path):
    config = base_config()
    config["tracker"]["max_events"] = 0
    with pytest.raises(ValueError, match="tracker.max_events"):
        load_config(write_config(tmp_path, config))
