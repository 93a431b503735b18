"""
Feed Reader - Configuration

Two layers of configuration:

1. Settings (process-wide, from environment variables):
     LOG_LEVEL                 - DEBUG | INFO | WARNING | ERROR (default: INFO)
     FEEDS_FILE                - JSON file listing feed configurations
     QUEUE_URL / QUEUE_API_KEY - queue RPC endpoint and key
     SUMMARY_TOPIC             - topic receiving file-level summaries (default: cdr-files)
     CACHE_BACKEND             - postgres | memory (default: postgres)
     DATABASE_URL              - Postgres DSN for the dedup cache
     TELEMETRY_URL / TELEMETRY_API_KEY
     APPLICATION_NAME / MODULE_NAME
     REPORT_STATS_INTERVAL_MS  - telemetry flush interval (default: 60000)
     IDLE_POLL_SECONDS         - sleep when a folder has nothing to read (default: 0)
     ERROR_BACKOFF_SECONDS     - pause after a file-level failure (default: 6)

2. FeedConfiguration (one per worker, from FEEDS_FILE):
     Immutable once loaded. Field names accept both snake_case and the
     camelCase keys used by existing feed files (dataKey, filePattern, ...).

Usage:
    from feedreader.core.config import get_settings, load_feed_configurations

    settings = get_settings()
    feeds = load_feed_configurations(settings.FEEDS_FILE)
"""

from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from feedreader.core.errors import ConfigurationError
from feedreader.workers.parser import split_fields

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "cdr-files"
DEFAULT_DELIMITER = r"\s+"
DEFAULT_ENCODING = "latin-1"


class Settings(BaseSettings):
    """Process-wide settings for the feed reader runner and its collaborators."""

    model_config = SettingsConfigDict(
        env_file=None,
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    FEEDS_FILE: str = Field(
        default="feeds.json",
        description="Path to the JSON feed configuration file",
    )

    # =========================================================================
    # QUEUE
    # =========================================================================

    QUEUE_URL: str = Field(default="", description="Base URL of the queue RPC surface")
    QUEUE_API_KEY: str = Field(default="", description="API key for the queue RPC surface")
    QUEUE_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    SUMMARY_TOPIC: str = Field(default=DEFAULT_TOPIC)

    # =========================================================================
    # DEDUP CACHE
    # =========================================================================

    CACHE_BACKEND: Literal["postgres", "memory"] = Field(default="postgres")
    DATABASE_URL: str = Field(default="", description="Postgres DSN for the dedup cache")

    # =========================================================================
    # TELEMETRY
    # =========================================================================

    TELEMETRY_URL: str = Field(default="", description="Statistics endpoint; empty disables")
    TELEMETRY_API_KEY: str = Field(default="")
    APPLICATION_NAME: str = Field(default="feed-reader")
    MODULE_NAME: str = Field(default="file-reader")
    REPORT_STATS_INTERVAL_MS: int = Field(default=60_000, ge=100)

    # =========================================================================
    # WORKER LOOP
    # =========================================================================

    IDLE_POLL_SECONDS: float = Field(default=0.0, ge=0)
    ERROR_BACKOFF_SECONDS: float = Field(default=6.0, ge=0)

    @property
    def telemetry_enabled(self) -> bool:
        return bool(self.TELEMETRY_URL)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached Settings instance."""
    return Settings()


def reset_settings() -> None:
    """Clear the cached settings (for testing or environment switch)."""
    get_settings.cache_clear()


class FeedConfiguration(BaseModel):
    """
    Parsing and routing rules for a single feed.

    Attributes:
        folder: Watched folder path
        file_pattern: Regex that a file name must fully match (None = all files)
        check_file_duplicates: Consult the dedup cache before processing a file
        data_key: Feed identifier, also the partition key for published records
        header_line: 1-based valid-line number that carries the in-file header
        header_delimiter: Regex splitting the configured header string
        record_delimiter: Regex splitting each record line
        record_skip_pattern: Regex; fully matching lines are not parsed
        header: Configured header string (split into `headers`)
        events_per_second: Target publish rate; <= 0 means unlimited
        topic: Destination topic for per-line records
        encoding: Text encoding of the feed files
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    folder: str
    data_key: str = Field(validation_alias=AliasChoices("data_key", "dataKey"))
    file_pattern: str | None = Field(
        default=None, validation_alias=AliasChoices("file_pattern", "filePattern")
    )
    check_file_duplicates: bool = Field(
        default=False,
        validation_alias=AliasChoices("check_file_duplicates", "checkFileDuplicates"),
    )
    header_line: int | None = Field(
        default=None, validation_alias=AliasChoices("header_line", "headerLine")
    )
    header_delimiter: str = Field(
        default=DEFAULT_DELIMITER,
        validation_alias=AliasChoices("header_delimiter", "headerDelimiter"),
    )
    record_delimiter: str = Field(
        default=DEFAULT_DELIMITER,
        validation_alias=AliasChoices("record_delimiter", "recordDelimiter"),
    )
    record_skip_pattern: str | None = Field(
        default=None,
        validation_alias=AliasChoices("record_skip_pattern", "recordSkipPattern"),
    )
    header: str | None = None
    events_per_second: int = Field(
        default=0, validation_alias=AliasChoices("events_per_second", "eventsPerSecond")
    )
    topic: str = Field(
        default=DEFAULT_TOPIC, validation_alias=AliasChoices("topic", "kafkaTopic")
    )
    encoding: str = DEFAULT_ENCODING

    @field_validator("header_delimiter", "record_delimiter", mode="before")
    @classmethod
    def _default_delimiter(cls, value: Any) -> Any:
        if value is None or value == "":
            return DEFAULT_DELIMITER
        return value

    @field_validator("file_pattern", mode="before")
    @classmethod
    def _empty_pattern_is_none(cls, value: Any) -> Any:
        if value == "":
            return None
        return value

    @field_validator("header_delimiter", "record_delimiter", "file_pattern")
    @classmethod
    def _must_compile(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"invalid regular expression {value!r}: {e}") from e
        return value

    @field_validator("header_line")
    @classmethod
    def _positive_header_line(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("header_line is 1-based and must be >= 1")
        return value

    @property
    def headers(self) -> list[str] | None:
        """Configured header names, or None when no header string is set."""
        if not self.header:
            return None
        return split_fields(self.header, self.header_delimiter)


_FEED_LIST = TypeAdapter(list[FeedConfiguration])


def load_feed_configurations(path: str | Path) -> list[FeedConfiguration]:
    """
    Load feed configurations from a JSON file.

    Accepts either a bare list of feed objects or {"feeds": [...]}.

    Raises:
        ConfigurationError: If the file is missing, not JSON, or invalid
    """
    config_path = Path(path)
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Cannot read feeds file {config_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Feeds file {config_path} is not valid JSON: {e}") from e

    if isinstance(raw, dict):
        raw = raw.get("feeds", [])

    try:
        feeds = _FEED_LIST.validate_python(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid feed configuration in {config_path}: {e}") from e

    data_keys = [feed.data_key for feed in feeds]
    duplicates = sorted({key for key in data_keys if data_keys.count(key) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate dataKey values in {config_path}: {duplicates}")

    for feed in feeds:
        logger.info(
            "Loaded feed dataKey=%s folder=%s filePattern=%s checkFileDuplicates=%s "
            "headerLine=%s recordDelimiter=%r recordSkipPattern=%r headers=%s "
            "eventsPerSecond=%d topic=%s",
            feed.data_key,
            feed.folder,
            feed.file_pattern,
            feed.check_file_duplicates,
            feed.header_line,
            feed.record_delimiter,
            feed.record_skip_pattern,
            feed.headers,
            feed.events_per_second,
            feed.topic,
        )
    return feeds
