"""Configuration management using Pydantic Settings."""

from __future__ import annotations

import sys
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pathspray.core.logger import get_logger

logger = get_logger(__name__)

# Stand-in for "no limit" on breaker cadences when force mode is on
UNLIMITED = sys.maxsize


class ConfigurationError(ValueError):
    """Raised when the run cannot be prepared from the given options."""
    pass


class LogLevel(str, Enum):
    """Log level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class SprayMode(str, Enum):
    """Where the candidate is placed in the request."""
    PATH = "path"
    HOST = "host"


class OutputFormat(str, Enum):
    """Output line formats."""
    JSON = "json"
    PROBE = "probe"


class DuplicatePolicy(str, Enum):
    """What happens to a near-duplicate of an already emitted baseline."""
    DISCARD = "discard"
    FUZZY = "fuzzy"


def split_csv(value: Any) -> Any:
    """Accept "a,b,c" wherever a list of strings is expected."""
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


def parse_status_codes(value: Any) -> frozenset[int]:
    """
    Parse a status code set.

    Args:
        value: Comma separated string ("404,400,410") or an iterable of ints

    Returns:
        Frozen set of status codes

    Raises:
        ValueError: If an entry is not an integer
    """
    items = split_csv(value) if isinstance(value, str) else list(value or [])
    codes = set()
    for item in items:
        try:
            codes.add(int(item))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid status code: {item!r}")
    return frozenset(codes)


def normalize_extension(ext: str) -> str:
    """Strip the leading dot so extensions compare the same way everywhere."""
    return ext.strip().lstrip(".")


class WordConfig(BaseModel):
    """Candidate generation configuration."""

    model_config = ConfigDict(frozen=True)

    word: str = ""
    dictionaries: list[Path] = Field(default_factory=list)
    rules: list[Path] = Field(default_factory=list)
    rule_filter: str = ""
    extensions: list[str] = Field(default_factory=list)
    remove_extensions: list[str] = Field(default_factory=list)
    exclude_extensions: list[str] = Field(default_factory=list)
    uppercase: bool = False
    lowercase: bool = False
    prefixes: list[str] = Field(default_factory=list)
    suffixes: list[str] = Field(default_factory=list)
    replaces: dict[str, str] = Field(default_factory=dict)
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=0, ge=0)

    @field_validator("extensions", "remove_extensions", "exclude_extensions", mode="before")
    @classmethod
    def split_extensions(cls, v: Any) -> list[str]:
        """Accept comma separated extensions with or without a leading dot."""
        return [normalize_extension(e) for e in split_csv(v) or [] if normalize_extension(e)]

    @model_validator(mode="after")
    def check_case_flags(self) -> "WordConfig":
        """Uppercase and lowercase cannot both be requested."""
        if self.uppercase and self.lowercase:
            raise ValueError("Cannot set uppercase and lowercase at the same time")
        return self


class ClassifierConfig(BaseModel):
    """Response classification configuration."""

    model_config = ConfigDict(frozen=True)

    match: Optional[str] = None
    filter: Optional[str] = None
    recursive: str = "current.is_dir"
    white_status: frozenset[int] = frozenset({200})
    black_status: frozenset[int] = frozenset({404, 400, 410})
    fuzzy_status: frozenset[int] = frozenset({403, 500, 501, 502, 503})
    distance: int = Field(default=5, ge=0, le=64)
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.DISCARD
    dedup_window: int = Field(default=256, ge=1)
    depth: int = Field(default=0, ge=0)

    @field_validator("white_status", "black_status", "fuzzy_status", mode="before")
    @classmethod
    def validate_status(cls, v: Any) -> frozenset[int]:
        """Parse status code sets."""
        return parse_status_codes(v)


class BreakerConfig(BaseModel):
    """Circuit breaker configuration."""

    model_config = ConfigDict(frozen=True)

    force: bool = False
    check_period: int = Field(default=200, ge=1)
    error_period: int = Field(default=10, ge=1)
    break_threshold: int = Field(default=20, ge=1)

    @model_validator(mode="before")
    @classmethod
    def apply_force(cls, data: Any) -> Any:
        """Force mode disables every cadence and the threshold."""
        if isinstance(data, dict) and data.get("force"):
            data = {
                **data,
                "check_period": UNLIMITED,
                "error_period": UNLIMITED,
                "break_threshold": UNLIMITED,
            }
        return data


class RequestConfig(BaseModel):
    """HTTP request configuration."""

    model_config = ConfigDict(frozen=True)

    mode: SprayMode = SprayMode.PATH
    timeout: float = Field(default=2.0, gt=0)
    headers: dict[str, str] = Field(default_factory=dict)
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    verify_ssl: bool = False
    max_body_size: int = Field(default=1024 * 1024, ge=0)
    extractors: list[str] = Field(default_factory=list)
    random_baseline: bool = True

    @field_validator("headers", mode="before")
    @classmethod
    def parse_headers(cls, v: Any) -> dict[str, str]:
        """Accept ["Name: value", ...] as well as a mapping."""
        if isinstance(v, dict) or v is None:
            return v or {}
        headers: dict[str, str] = {}
        for line in v:
            name, sep, value = line.partition(":")
            if not sep or not name.strip():
                logger.warning("Invalid header skipped", header=line)
                continue
            headers[name.strip()] = value.strip()
        return headers

    @field_validator("extractors", mode="before")
    @classmethod
    def split_extractors(cls, v: Any) -> list[str]:
        """Allow a single extractor string."""
        if isinstance(v, str):
            return [v]
        return v or []


class RunConfig(BaseModel):
    """Scheduling, checkpoint and output configuration."""

    model_config = ConfigDict(frozen=True)

    pool_size: int = Field(default=5, ge=1)
    threads: int = Field(default=20, ge=1)
    deadline: float = Field(default=999999, gt=0)
    drain_timeout: float = Field(default=5.0, ge=0)
    checkpoint_period: int = Field(default=1000, ge=1)
    stat_file: Path = Path("stat.json")
    check_only: bool = False
    queue_size: int = Field(default=100, ge=1)
    output_file: Optional[Path] = None
    fuzzy_file: Optional[Path] = None
    fuzzy: bool = False
    output_format: OutputFormat = OutputFormat.JSON
    probes: list[str] = Field(default_factory=lambda: ["url", "status", "length", "title"])

    @field_validator("probes", mode="before")
    @classmethod
    def split_probes(cls, v: Any) -> list[str]:
        """Accept comma separated probe fields."""
        return split_csv(v) or []


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="PATHSPRAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = "pathspray"
    debug: bool = False
    log_level: LogLevel = LogLevel.INFO
    log_json: bool = False

    word: WordConfig = Field(default_factory=WordConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    breaker: BreakerConfig = Field(default_factory=BreakerConfig)
    request: RequestConfig = Field(default_factory=RequestConfig)
    run: RunConfig = Field(default_factory=RunConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "Settings":
        """Load settings from YAML file."""
        import yaml

        if not path.exists():
            return cls()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def to_yaml(self, path: Path) -> None:
        """Save settings to YAML file."""
        import yaml

        data = self.model_dump(mode="json")

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_settings(config_path: Optional[Path] = None, **overrides: Any) -> Settings:
    """
    Load settings from a config file or the environment, then apply overrides.

    Overrides are merged section by section so a CLI flag only replaces the
    field it names.
    """
    if config_path and config_path.exists():
        base = Settings.from_yaml(config_path)
    else:
        base = Settings()

    if not overrides:
        return base

    data = base.model_dump()
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(data.get(key), dict):
            data[key] = {**data[key], **value}
        else:
            data[key] = value
    return Settings(**data)
