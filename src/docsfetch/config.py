"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Constructor / CLI overrides
  2. Environment variables  (DOCSFETCH__CRAWL__LIMIT=25)
  3. docsfetch.yaml         (--config path, else cwd, else platform config dir)
  4. Hardcoded defaults

The config file is optional; all fields have sensible defaults. Settings are
frozen once loaded.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from docsfetch.errors import ConfigError

_DEFAULT_CACHE_DIR = platformdirs.user_cache_dir("docsfetch")
CONFIG_FILE_NAME = "docsfetch.yaml"


def _find_config_file() -> str | None:
    """Return the path of the first docsfetch.yaml found, or None."""
    candidates = [
        Path(CONFIG_FILE_NAME),
        Path(platformdirs.user_config_dir("docsfetch")) / CONFIG_FILE_NAME,
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ScanSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    root_dir: str = "."
    scan_patterns: list[str] = [
        "package.json",
        "**/package.json",
        "pyproject.toml",
        "**/pyproject.toml",
    ]
    exclude_patterns: list[str] = [
        "**/node_modules/**",
        "**/dist/**",
        "**/build/**",
        "**/coverage/**",
        "**/.git/**",
    ]
    exclude_packages: list[str] = []
    exclude_name_patterns: list[str] = []


class CacheSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    dir: str = _DEFAULT_CACHE_DIR
    max_age_days: float = Field(default=30, ge=0)


class CrawlSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    limit: int = Field(default=15, ge=1)
    max_depth: int = Field(default=3, ge=0)
    delay_ms: int = Field(default=1000, ge=0)
    navigation_timeout_seconds: float = Field(default=45.0, gt=0)
    content_selector: str = "main"
    expand_settle_ms: int = Field(default=500, ge=0)
    max_retries: int = Field(default=2, ge=0)
    renderer: Literal["browser", "http"] = "browser"
    headless: bool = True
    restrict_to_base_path: bool = True
    allowed_domains: list[str] = []
    exclude_paths: list[str] = ["/blog", "/news", "/community", "/download", "/changelog"]
    user_agent: str = "docsfetch/1.0"


class ResolverSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    registry_url: str = "https://registry.npmjs.org"
    pypi_url: str = "https://pypi.org/pypi/{name}/json"
    # Empty means any public host is accepted; private addresses never are.
    allowed_domains: list[str] = []
    known_docs: dict[str, str] = {}
    timeout_seconds: float = Field(default=10.0, gt=0)
    # Retries after the first attempt, as for crawl.max_retries
    max_retries: int = Field(default=2, ge=0)


class ScoreWeights(BaseModel):
    model_config = ConfigDict(frozen=True)

    freshness: float = Field(default=0.2, ge=0)
    size: float = Field(default=0.1, ge=0)
    language: float = Field(default=0.2, ge=0)
    readability: float = Field(default=0.3, ge=0)
    completeness: float = Field(default=0.2, ge=0)


class ScoreSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_size_bytes: int = Field(default=1000, ge=1)
    max_size_bytes: int = Field(default=1_000_000, ge=1)
    min_word_count: int = Field(default=100, ge=1)
    # Pages older than this score zero for freshness
    max_age_days: float = Field(default=365, gt=0)
    allowed_content_types: list[str] = ["text/html", "text/plain", "application/json"]
    timeout_seconds: float = Field(default=10.0, gt=0)
    max_redirects: int = Field(default=5, ge=0)
    weights: ScoreWeights = ScoreWeights()


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "text"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: DOCSFETCH__CRAWL__DELAY_MS=500
        env_prefix="DOCSFETCH__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
        frozen=True,
    )

    scan: ScanSettings = ScanSettings()
    cache: CacheSettings = CacheSettings()
    crawl: CrawlSettings = CrawlSettings()
    resolver: ResolverSettings = ResolverSettings()
    score: ScoreSettings = ScoreSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )


def load_settings(config_path: str | Path | None = None, **overrides: Any) -> Settings:
    """Load settings once at startup.

    ``config_path`` replaces the YAML lookup. ``overrides`` are nested dicts
    keyed by section (``crawl={"limit": 5}``) and win over every other source.
    Raises ConfigError on any invalid value.
    """
    settings_cls: type[Settings] = Settings
    if config_path is not None:
        path = Path(config_path)
        if not path.is_file():
            raise ConfigError(
                f"Config file not found: {path}",
                suggestion="Pass an existing YAML file to --config.",
            )

        class _FileSettings(Settings):
            model_config = SettingsConfigDict(yaml_file=str(path))

        settings_cls = _FileSettings

    try:
        return settings_cls(**overrides)
    except (ValidationError, yaml.YAMLError) as exc:
        raise ConfigError(
            f"Invalid configuration: {exc}",
            suggestion="Check docsfetch.yaml and DOCSFETCH__* environment variables.",
        ) from exc
