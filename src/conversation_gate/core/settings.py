"""
Runtime configuration for the conversation gate.

Settings come from environment variables (a local ``.env`` file is loaded
first when present). Constructor arguments on the individual gates override
whatever is configured here.
"""
import logging
import os
import re
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

from conversation_gate.core.errors import GateConfigurationError

DEFAULT_WINDOW_MS = 4_000
DEFAULT_POLL_INTERVAL_MS = 250
DEFAULT_BATCH_KEY_PREFIX = "conversation-gate:input-batch"
DEFAULT_STOP_KEY_PREFIX = "conversation-gate:input-stop"

# Lock and batch list both live for this many windows after their last refresh
TTL_WINDOW_MULTIPLIER = 3


def normalize_key_prefix(prefix: str) -> str:
    """Replace whitespace runs in a key prefix with a single dash."""
    return re.sub(r"\s+", "-", prefix)


class GateSettings(BaseModel):
    """Configuration shared by the stop gate and the batch coordinator."""
    redis_url: Optional[str] = None
    window_ms: int = DEFAULT_WINDOW_MS
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    batch_key_prefix: str = DEFAULT_BATCH_KEY_PREFIX
    stop_key_prefix: str = DEFAULT_STOP_KEY_PREFIX
    socket_timeout_seconds: float = 5.0
    log_level: str = "INFO"

    @field_validator("window_ms", "poll_interval_ms")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive number of milliseconds")
        return v

    @field_validator("batch_key_prefix", "stop_key_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        v = normalize_key_prefix(v.strip())
        if not v:
            raise ValueError("key prefix cannot be empty")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def ttl_ms(self) -> int:
        """Expiry applied to batch lists and batch locks."""
        return self.window_ms * TTL_WINDOW_MULTIPLIER

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "GateSettings":
        """
        Build settings from environment variables.

        Args:
            load_dotenv_file: Load a ``.env`` file from the working directory first

        Returns:
            GateSettings populated from the environment, defaults elsewhere

        Raises:
            GateConfigurationError: If a variable holds an invalid value
        """
        if load_dotenv_file:
            load_dotenv()

        default_level = "DEBUG" if os.getenv("ENV", "").lower() == "development" else "INFO"
        raw = {
            "redis_url": os.getenv("REDIS_URL") or None,
            "window_ms": os.getenv("BATCH_WINDOW_MS", str(DEFAULT_WINDOW_MS)),
            "poll_interval_ms": os.getenv("BATCH_POLL_INTERVAL_MS", str(DEFAULT_POLL_INTERVAL_MS)),
            "batch_key_prefix": os.getenv("BATCH_KEY_PREFIX", DEFAULT_BATCH_KEY_PREFIX),
            "stop_key_prefix": os.getenv("STOP_KEY_PREFIX", DEFAULT_STOP_KEY_PREFIX),
            "socket_timeout_seconds": os.getenv("REDIS_SOCKET_TIMEOUT_SECONDS", "5.0"),
            "log_level": os.getenv("LOG_LEVEL") or default_level,
        }
        try:
            return cls(**raw)
        except ValidationError as e:
            raise GateConfigurationError(f"Invalid gate configuration: {e}") from e

    def require_redis_url(self) -> str:
        """Return the Redis URL or fail with a configuration error."""
        if not self.redis_url:
            raise GateConfigurationError(
                "REDIS_URL is not set. Provide it in the constructor or .env file."
            )
        return self.redis_url
