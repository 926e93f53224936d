"""Tests for configuration loading."""

from datetime import timedelta
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from deal_matcher.config import Settings, get_settings, load_config
from deal_matcher.core.gateway import DEFAULT_CALL_TIMEOUT

CONFIG_YAML = """
matching:
  batch_size: 5
  acceptance_threshold: 70
cache:
  window_hours: 12
paths:
  store_dir: /tmp/deal-store
source:
  deals_file: exports/deals.json
prompts:
  inclusion:
    system: Be strict.
"""


def test_defaults() -> None:
    settings = Settings()

    assert settings.matching.batch_size == 10
    assert settings.matching.concurrency == 3
    assert settings.matching.acceptance_threshold == 50
    assert settings.matching.exclusion_confidence == 90
    assert settings.matching.call_timeout == DEFAULT_CALL_TIMEOUT == 60
    assert settings.cache_window == timedelta(hours=24)
    settings.validate()


def test_missing_file_gives_empty_config() -> None:
    assert load_config(Path("/nonexistent/config.yaml")) == {}


def test_get_settings_from_yaml_and_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    monkeypatch.setenv("EXTRACTION_URL", "https://extract.example/deals")
    monkeypatch.delenv("SLACK_WEBHOOK_URL", raising=False)

    with TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "config.yaml"
        config_path.write_text(CONFIG_YAML, encoding="utf-8")

        settings = get_settings(config_path)

    assert settings.anthropic_api_key == "sk-test"
    assert settings.slack_webhook_url is None
    assert settings.matching.batch_size == 5
    assert settings.matching.acceptance_threshold == 70
    assert settings.matching.concurrency == 3
    assert settings.cache_window == timedelta(hours=12)
    assert settings.store_dir == Path("/tmp/deal-store")
    assert settings.source.deals_file == Path("exports/deals.json")
    assert settings.source.extraction_url == "https://extract.example/deals"
    assert settings.prompts.inclusion["system"] == "Be strict."
    # Unset prompt keys keep their defaults
    assert "{products}" in settings.prompts.inclusion["user"]


@pytest.mark.parametrize(
    "section, key, value",
    [
        ("matching", "batch_size", 0),
        ("matching", "concurrency", 0),
        ("matching", "acceptance_threshold", 101),
        ("matching", "exclusion_confidence", -1),
        ("cache", "window_hours", 0),
    ],
)
def test_validate_rejects_bad_values(section: str, key: str, value: float) -> None:
    settings = Settings()
    setattr(getattr(settings, section), key, value)

    with pytest.raises(ValueError):
        settings.validate()
