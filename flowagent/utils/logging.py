"""Logging setup shared by the service, agent runs and the CLI."""

import logging
import sys

from pydantic import BaseModel

from flowagent.config import get_settings

# Provider SDKs and HTTP clients log every request at INFO
QUIET_LOGGERS = ("anthropic", "openai", "httpx", "httpcore", "google_genai", "uvicorn.access")


class LogConfig(BaseModel):
    """Log level and line layout."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"

    @classmethod
    def from_settings(cls) -> "LogConfig":
        return cls(level=get_settings().log_level)


def setup_logging(config: LogConfig | None = None) -> None:
    """Configure the root logger; called once when the app starts."""
    config = config or LogConfig.from_settings()

    logging.basicConfig(
        level=getattr(logging, config.level.upper()),
        format=config.format,
        datefmt=config.date_format,
        stream=sys.stdout,
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """Get a module logger at ``level``, or the configured log level.

    Args:
        name: Module name (typically __name__)
        level: Explicit level overriding the settings

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel((level or get_settings().log_level).upper())
    return logger


def preview(text: str, limit: int = 50) -> str:
    """Shorten user-supplied text for a log line."""
    return text if len(text) <= limit else f"{text[:limit]}..."
