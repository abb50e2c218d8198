"""Configuration loading and logging setup shared by the entry points."""
import logging
import os
from pathlib import Path
from typing import Optional

import yaml
import structlog
from dotenv import load_dotenv

CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

logger = structlog.get_logger()


class ConfigError(Exception):
    """Raised when required configuration is missing."""


def configure_logging(level: Optional[str] = None):
    """Configure structured logging."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(format="%(message)s", level=getattr(logging, level_name, logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def load_config(path: Optional[Path] = None) -> dict:
    """Load configuration from YAML and apply environment overrides."""
    load_dotenv()
    config_path = Path(path) if path else CONFIG_PATH

    config: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            config = yaml.safe_load(f) or {}
        logger.info("config_loaded", path=str(config_path))
    else:
        logger.warning("config_file_not_found", path=str(config_path))

    provider = config.setdefault("provider", {})
    provider["api_key"] = os.getenv("NANSEN_API_KEY", provider.get("api_key", ""))

    database = config.setdefault("database", {})
    if os.getenv("DATABASE_PATH"):
        database["path"] = os.getenv("DATABASE_PATH")

    if os.getenv("CHAINS"):
        config.setdefault("trading", {})["chains"] = [
            c.strip() for c in os.getenv("CHAINS").split(",") if c.strip()
        ]

    return config


def validate_config(config: dict):
    """Fail fast on settings the provider cannot work without."""
    if not config.get("provider", {}).get("api_key"):
        raise ConfigError("NANSEN_API_KEY is required in .env file")
