import os

import pytest

from linkhub.infrastructure.config import settings
from linkhub.infrastructure.config.settings import (
    DEFAULT_MODELS,
    QueueSettings,
    get_config,
    get_model_list,
    get_queue_settings,
    get_token_limits,
    load_configuration,
    set_config_for_testing,
)


@pytest.fixture
def fresh_config(monkeypatch):
    """Resets the module-level configuration store."""
    monkeypatch.setattr(settings, "_config", {})
    monkeypatch.setattr(settings, "_loaded", False)
    for key in ("LINKHUB_QUEUE_BATCH_SIZE", "QUEUE_BATCH_SIZE", "LINKHUB_AI_MODELS", "AI_MODELS"):
        monkeypatch.delenv(key, raising=False)


def write_yaml(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_without_any_configuration(fresh_config, tmp_path):
    load_configuration(config_file=tmp_path / "missing.yaml", env_file=tmp_path / "missing.env")
    assert get_queue_settings() == QueueSettings()
    assert get_model_list() == DEFAULT_MODELS


def test_yaml_values_are_flattened(fresh_config, tmp_path):
    path = write_yaml(tmp_path, """
queue:
  batch_size: 5
  auto_processing: false
ai:
  models: [llama-3.1-8b-instant, "openai:gpt-4o-mini"]
  token_limits:
    llama-3.1-8b-instant: 8000
""")
    load_configuration(config_file=path, env_file=tmp_path / "missing.env")

    queue = get_queue_settings()
    assert queue.batch_size == 5
    assert queue.auto_processing is False
    assert get_model_list() == ["llama-3.1-8b-instant", "openai:gpt-4o-mini"]
    assert get_token_limits() == {"llama-3.1-8b-instant": 8000}


def test_environment_overrides_yaml(fresh_config, tmp_path, monkeypatch):
    path = write_yaml(tmp_path, "queue:\n  batch_size: 5\n")
    load_configuration(config_file=path, env_file=tmp_path / "missing.env")
    monkeypatch.setenv("LINKHUB_QUEUE_BATCH_SIZE", "2")
    monkeypatch.setenv("LINKHUB_AI_MODELS", "m1, openai:m2")

    assert get_queue_settings().batch_size == 2
    assert get_model_list() == ["m1", "openai:m2"]


def test_dotenv_file_is_loaded(fresh_config, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("LINKHUB_QUEUE_BATCH_SIZE=4\n", encoding="utf-8")
    load_configuration(config_file=tmp_path / "missing.yaml", env_file=env_file)
    try:
        assert get_config("queue.batch_size") == 4
    finally:
        os.environ.pop("LINKHUB_QUEUE_BATCH_SIZE", None)


def test_test_config_has_highest_priority(fresh_config, monkeypatch):
    monkeypatch.setenv("LINKHUB_QUEUE_BATCH_SIZE", "2")
    set_config_for_testing({"queue.batch_size": 9})
    assert get_queue_settings().batch_size == 9


def test_invalid_yaml_is_logged_not_raised(fresh_config, tmp_path):
    path = write_yaml(tmp_path, "queue: [unclosed\n")
    load_configuration(config_file=path, env_file=tmp_path / "missing.env")
    assert get_queue_settings() == QueueSettings()
