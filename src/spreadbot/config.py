"""
Configuration Module
====================

Application configuration using pydantic-settings.

Settings are read from a TOML file and validated by ``Settings``. Any field
the file leaves out may be supplied through the environment with the
``SPREADBOT_`` prefix; nested keys use ``__``:

    SPREADBOT_READ_ONLY__API_SECRET=...   secret kept out of the file
    SPREADBOT_LOG_LEVEL=DEBUG

Example file:

    currency_pair = "XBT/AUD"
    poll_interval_seconds = 5
    flush_interval_seconds = 3600
    output_path = "spread-bot.log"

    [read_only]
    api_key = "b2111111-4b1c-4880-b4c4-036d81f3de59"
    api_secret = "11111193333335555558888888111111"

Production notes:
    - The exchange allows roughly one request per second per IP for public
      calls; keep poll_interval_seconds >= 1.
    - Use a read-only key. The trading key is only read, never used, by the
      sampler.
"""

import logging
import tomllib
from decimal import Decimal
from pathlib import Path
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from spreadbot.errors import ConfigMalformedError, ConfigMissingError
from spreadbot.types import CurrencyPair

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "spreadbot.toml"


class ApiKey(BaseModel):
    """A single key, made up of public and private parts."""

    api_key: str = Field(min_length=1)
    api_secret: SecretStr


class Settings(BaseSettings):
    """
    Collector settings.

    Required: currency_pair, poll_interval_seconds, flush_interval_seconds,
    output_path and the read_only key.
    """

    model_config = SettingsConfigDict(
        env_prefix="SPREADBOT_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Sampling
    currency_pair: str = Field(description="Pair to sample, BASE/QUOTE (e.g. XBT/AUD)")
    poll_interval_seconds: float = Field(gt=0, description="Seconds between spread samples")
    flush_interval_seconds: float = Field(gt=0, description="Seconds per aggregation window")
    fill_volume: Optional[Decimal] = Field(
        default=None,
        gt=0,
        description="Measure the spread to fill this base volume instead of top of book",
    )

    # Output
    output_path: Path = Field(description="Flush log, one JSON line per window")

    # Credentials
    read_only: ApiKey
    trading: Optional[ApiKey] = None

    # Exchange endpoint
    base_url: str = Field(
        default="https://api.independentreserve.com",
        description="Independent Reserve API base URL",
    )
    request_timeout_seconds: float = Field(default=10.0, gt=0, le=120)
    min_request_interval_ms: int = Field(default=1000, ge=0)

    # Failure handling
    backoff_base_seconds: float = Field(default=1.0, gt=0)
    backoff_max_seconds: float = Field(default=60.0, gt=0)
    protocol_retry_limit: int = Field(
        default=5,
        ge=0,
        description="Consecutive protocol errors tolerated before stopping",
    )
    persist_max_attempts: int = Field(default=3, ge=1)
    persist_retry_delay_seconds: float = Field(default=1.0, ge=0)
    tolerate_persistence_loss: bool = Field(
        default=False,
        description="Keep running when a flush record cannot be written",
    )
    drain_timeout_seconds: float = Field(default=5.0, gt=0)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    @field_validator("currency_pair")
    @classmethod
    def pair_format(cls, v: str) -> str:
        return str(CurrencyPair.parse(v))

    @field_validator("log_level", mode="before")
    @classmethod
    def level_uppercase(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def validate_and_warn(self) -> "Settings":
        """Reject inconsistent backoff bounds and warn about odd cadences."""
        if self.backoff_base_seconds > self.backoff_max_seconds:
            raise ValueError("backoff_base_seconds must not exceed backoff_max_seconds")

        if self.flush_interval_seconds < self.poll_interval_seconds:
            logger.warning(
                "config_flush_shorter_than_poll",
                extra={
                    "poll_interval_seconds": self.poll_interval_seconds,
                    "flush_interval_seconds": self.flush_interval_seconds,
                },
            )
        return self

    @property
    def pair(self) -> CurrencyPair:
        return CurrencyPair.parse(self.currency_pair)

    def dump(self) -> dict:
        """
        Dump the effective configuration with secrets masked.

        Returns:
            JSON-compatible dictionary.
        """
        return self.model_dump(mode="json")


def load_settings(path: Union[str, Path]) -> Settings:
    """
    Load and validate settings from a TOML file.

    Raises:
        ConfigMissingError: File absent or required fields missing.
        ConfigMalformedError: File unreadable, not TOML, or invalid values.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigMissingError(f"config file not found: {path}")

    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigMalformedError(f"config file {path} is not valid TOML: {e}") from e
    except OSError as e:
        raise ConfigMalformedError(f"config file {path} could not be read: {e}") from e

    try:
        settings = Settings(**data)
    except ValidationError as e:
        missing = [
            ".".join(str(p) for p in err["loc"])
            for err in e.errors()
            if err["type"] == "missing"
        ]
        if missing:
            raise ConfigMissingError(
                f"config {path} is missing required fields: {', '.join(missing)}",
                fields=missing,
            ) from e
        raise ConfigMalformedError(f"config {path} is invalid: {e}") from e

    logger.info(
        "config_loaded",
        extra={"path": str(path), "currency_pair": settings.currency_pair},
    )
    return settings
