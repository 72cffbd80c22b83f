import pytest
import yaml

from reflecta.config import ConfigError, load_config


def test_defaults_load(tmp_path):
    config = load_config()

    assert config.worker.batch_size == 5
    assert config.worker.idle_sleep_seconds == 3.0
    assert config.worker.error_sleep_seconds == 5.0
    assert config.worker.job_timeout_seconds == 120.0
    assert config.analyzer.primary_model == "gpt-4o-mini"
    assert config.analyzer.max_chars == 12000
    assert config.api.max_page_size == 100
    assert config.paths.state_db == str(tmp_path / "state.sqlite3")


def test_yaml_overrides_merge_over_defaults(tmp_path, monkeypatch):
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text(
        yaml.safe_dump({"worker": {"batch_size": 2}, "analyzer": {"provider_type": "anthropic"}}),
        encoding="utf-8",
    )
    monkeypatch.setenv("RF_CONFIG_PATH", str(cfg_path))

    config = load_config()

    assert config.worker.batch_size == 2
    assert config.worker.idle_sleep_seconds == 3.0
    assert config.analyzer.provider_type == "anthropic"


@pytest.mark.parametrize(
    "override",
    [
        {"worker": {"batch_size": "five"}},
        {"worker": {"bogus": 1}},
        {"unknown_section": {}},
        {"analyzer": {"provider_type": "google"}},
        {"worker": {"batch_size": 0}},
        {"analyzer": {"temperature": True}},
        {"worker": {"job_timeout_seconds": 30.0}},
        {"worker": {"job_timeout_seconds": 100}, "analyzer": {"timeout_seconds": 60}},
    ],
)
def test_invalid_config_raises(tmp_path, override):
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text(yaml.safe_dump(override), encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(str(cfg_path))


def test_missing_config_file_raises(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "nope.yml"))


def test_env_overrides_paths(tmp_path, monkeypatch):
    monkeypatch.delenv("RF_STATE_DB", raising=False)
    monkeypatch.setenv("RF_DATA_DIR", str(tmp_path / "data"))

    config = load_config()

    assert config.paths.data_dir == str(tmp_path / "data")
    assert config.paths.state_db == str(tmp_path / "data" / "reflecta.sqlite3")


def test_api_key_read_from_named_env(monkeypatch):
    config = load_config()
    assert config.analyzer.api_key is None

    monkeypatch.setenv("OPENAI_API_KEY", " sk-live ")

    assert config.analyzer.api_key == "sk-live"


def test_job_timeout_may_cover_both_model_calls(tmp_path):
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text(
        yaml.safe_dump({"worker": {"job_timeout_seconds": 40}, "analyzer": {"timeout_seconds": 20}}),
        encoding="utf-8",
    )

    config = load_config(str(cfg_path))

    assert config.worker.job_timeout_seconds == 40.0
    assert config.analyzer.timeout_seconds == 20.0
