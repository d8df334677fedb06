"""Tests for configuration loading and validation."""
import pytest

from opmetrics.config import ClassifierConfig, Config, SketchConfig, load_config


def write(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return str(path)


def test_default_config_file_loads():
    config = load_config("configs/default.yaml")

    assert isinstance(config, Config)
    assert config.global_.flush_interval_s == 10
    assert config.classifier.max_index_count == 3
    assert config.classifier.wildcard_token == "__any"
    assert config.sketch.relative_accuracy == 0.01
    assert config.exporters.prometheus.enabled
    assert not config.exporters.otel.enabled


def test_empty_file_gives_defaults(tmp_path):
    config = load_config(write(tmp_path, ""))

    assert config.global_.log_level == "INFO"
    assert config.toggles.coordinator_metrics_enabled
    assert config.exporters.prometheus.port == 9108


def test_global_section_uses_alias(tmp_path):
    config = load_config(write(tmp_path, "global:\n  flush_interval_s: 2.5\n  log_format: json\n"))

    assert config.global_.flush_interval_s == 2.5
    assert config.global_.log_format == "json"


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config("does/not/exist.yaml")


@pytest.mark.parametrize("text", [
    "global:\n  flush_interval_s: 0\n",
    "global:\n  log_format: xml\n",
    "classifier:\n  max_index_count: 0\n",
    "classifier:\n  wildcard_token: 'a*'\n",
    "sketch:\n  relative_accuracy: 1.5\n",
])
def test_invalid_values_rejected(tmp_path, text):
    with pytest.raises(ValueError):
        load_config(write(tmp_path, text))


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("OTEL_ENDPOINT", "collector:4317")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("OPMETRICS_FLUSH_INTERVAL_S", "30")

    config = load_config(write(tmp_path, "global:\n  log_level: INFO\n"))

    assert config.exporters.otel.endpoint == "collector:4317"
    assert config.global_.log_level == "DEBUG"
    assert config.global_.flush_interval_s == 30.0


def test_models_validate_directly():
    with pytest.raises(ValueError):
        ClassifierConfig(wildcard_token="")
    with pytest.raises(ValueError):
        SketchConfig(relative_accuracy=0)
    assert SketchConfig(relative_accuracy=0.05).relative_accuracy == 0.05
