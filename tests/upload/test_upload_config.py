"""
Upload Config Tests

To run these tests:
    pytest tests/upload/test_upload_config.py -v
"""

import pytest
import yaml

from upload.config import UploadConfig


@pytest.mark.unit
def test_defaults_written_on_first_run(tmp_path):
    path = tmp_path / "config" / "upload.yaml"

    config = UploadConfig(config_path=path)

    assert path.exists()
    assert config.max_concurrent_uploads == 3
    assert config.completed_history_limit == 50
    assert yaml.safe_load(path.read_text())["max_concurrent_uploads"] == 3


@pytest.mark.unit
def test_file_overrides_defaults(tmp_path):
    path = tmp_path / "upload.yaml"
    path.write_text(yaml.safe_dump({"max_concurrent_uploads": 1, "start_paused": True}))

    config = UploadConfig(config_path=path)

    assert config.max_concurrent_uploads == 1
    assert config.start_paused is True
    assert config.multipart_concurrency == 4


@pytest.mark.unit
def test_invalid_values_rejected(tmp_path):
    path = tmp_path / "upload.yaml"
    path.write_text(yaml.safe_dump({"max_concurrent_uploads": 0}))

    with pytest.raises(ValueError, match="max_concurrent_uploads must be at least 1"):
        UploadConfig(config_path=path)


@pytest.mark.unit
def test_set_persists(tmp_path):
    path = tmp_path / "upload.yaml"
    config = UploadConfig(config_path=path, save_default=False)

    config.set("sc_player_base_url", "https://player.example.com/api")

    assert UploadConfig(config_path=path).sc_player_base_url == "https://player.example.com/api"
