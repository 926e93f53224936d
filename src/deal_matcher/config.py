"""Configuration management."""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Optional

import yaml

from deal_matcher.core.gateway import EXCLUSION_PROMPT, INCLUSION_PROMPT


@dataclass
class ClaudeConfig:
    """Claude API settings."""
    model: str = "claude-3-haiku-20240307"
    max_tokens: int = 1000
    temperature: float = 0.0
    max_retries: int = 5
    initial_retry_delay: float = 2.0
    request_delay: float = 0.5
    timeout: float = 60.0


@dataclass
class MatchingConfig:
    """Matching pipeline settings."""
    batch_size: int = 10
    concurrency: int = 3
    acceptance_threshold: float = 50.0
    exclusion_confidence: float = 90.0
    call_timeout: float = 60.0


@dataclass
class CacheConfig:
    """Snapshot cache settings."""
    window_hours: float = 24.0


@dataclass
class PathsConfig:
    """Path settings."""
    store_dir: Path = Path("data")
    debug_dir: Path = Path("debug")


@dataclass
class SourceConfig:
    """Where deals come from."""
    deals_file: Optional[Path] = None
    extraction_url: Optional[str] = None
    timeout: float = 300.0


@dataclass
class PromptsConfig:
    """Prompts for the classification oracle."""
    exclusion: dict = field(default_factory=lambda: dict(EXCLUSION_PROMPT))
    inclusion: dict = field(default_factory=lambda: dict(INCLUSION_PROMPT))


@dataclass
class Settings:
    """Application settings."""

    # Secrets (from environment only)
    anthropic_api_key: str = ""
    slack_webhook_url: Optional[str] = None

    # Config sections
    claude: ClaudeConfig = field(default_factory=ClaudeConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    prompts: PromptsConfig = field(default_factory=PromptsConfig)

    @property
    def cache_window(self) -> timedelta:
        return timedelta(hours=self.cache.window_hours)

    @property
    def store_dir(self) -> Path:
        return self.paths.store_dir

    @property
    def debug_dir(self) -> Path:
        return self.paths.debug_dir

    def validate(self) -> None:
        """Reject values the pipeline cannot run with."""
        if self.matching.batch_size < 1:
            raise ValueError("matching.batch_size must be at least 1")
        if self.matching.concurrency < 1:
            raise ValueError("matching.concurrency must be at least 1")
        for name in ("acceptance_threshold", "exclusion_confidence"):
            value = getattr(self.matching, name)
            if not 0 <= value <= 100:
                raise ValueError(f"matching.{name} must be between 0 and 100")
        if self.cache.window_hours <= 0:
            raise ValueError("cache.window_hours must be positive")


def load_config(config_path: Path = Path("config.yaml")) -> dict:
    """Load configuration from YAML file."""
    if not config_path.exists():
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_settings(config_path: Path = Path("config.yaml")) -> Settings:
    """Get application settings from YAML config and environment."""
    config = load_config(config_path)

    settings = Settings(
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
        slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL"),
    )

    if "claude" in config:
        for key, value in config["claude"].items():
            setattr(settings.claude, key, value)

    if "matching" in config:
        for key, value in config["matching"].items():
            setattr(settings.matching, key, value)

    if "cache" in config:
        for key, value in config["cache"].items():
            setattr(settings.cache, key, value)

    if "paths" in config:
        for key, value in config["paths"].items():
            setattr(settings.paths, key, Path(value))

    if "source" in config:
        for key, value in config["source"].items():
            if key == "deals_file" and value is not None:
                value = Path(value)
            setattr(settings.source, key, value)

    if "prompts" in config:
        for key, value in config["prompts"].items():
            merged = dict(getattr(settings.prompts, key))
            merged.update(value)
            setattr(settings.prompts, key, merged)

    # Environment wins over YAML for the extraction endpoint
    extraction_url = os.getenv("EXTRACTION_URL")
    if extraction_url:
        settings.source.extraction_url = extraction_url

    settings.validate()
    return settings
