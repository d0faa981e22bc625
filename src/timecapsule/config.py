"""Configuration management for the release engine."""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from timecapsule.local_time import is_valid_timezone
from timecapsule.models import RecurrenceInterval


logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Database configuration settings."""

    path: str = "timecapsule.db"
    max_retries: int = 3


@dataclass
class SchedulerConfig:
    """Release scheduler configuration settings."""

    tick_interval_seconds: int = 60
    default_timezone: str = "America/New_York"
    default_recurrence_interval: str = RecurrenceInterval.YEARLY.value
    batch_size: int = 500


@dataclass
class DeliveryConfig:
    """Delivery attempt configuration settings."""

    timeout_seconds: float = 30.0
    max_retries: int = 3
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 10.0


@dataclass
class NotifierConfig:
    """Email relay configuration settings."""

    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    from_address: str = "noreply@memorials.local"
    public_base_url: str = ""


@dataclass
class LoggingConfig:
    """Logging configuration settings."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


@dataclass
class AppConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    notifier: NotifierConfig = field(default_factory=NotifierConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _read_int(name: str, current: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return current
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid {name} value: {raw}")
        return current


def _read_float(name: str, current: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return current
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid {name} value: {raw}")
        return current


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Load configuration from environment variables and an optional .env file.

    Args:
        config_path: Optional path to a .env file. Defaults to dotenv's lookup.

    Returns:
        AppConfig with all settings loaded.
    """
    load_dotenv(config_path)
    config = AppConfig()

    database_path = os.environ.get("TIMECAPSULE_DB_PATH")
    if database_path:
        config.database.path = os.path.expanduser(database_path)
    config.database.max_retries = _read_int(
        "TIMECAPSULE_DB_MAX_RETRIES", config.database.max_retries
    )

    config.scheduler.tick_interval_seconds = _read_int(
        "TIMECAPSULE_TICK_INTERVAL", config.scheduler.tick_interval_seconds
    )
    config.scheduler.batch_size = _read_int(
        "TIMECAPSULE_BATCH_SIZE", config.scheduler.batch_size
    )
    default_timezone = os.environ.get("TIMECAPSULE_DEFAULT_TIMEZONE")
    if default_timezone:
        config.scheduler.default_timezone = default_timezone
    default_interval = os.environ.get("TIMECAPSULE_DEFAULT_INTERVAL")
    if default_interval:
        config.scheduler.default_recurrence_interval = default_interval.lower()

    config.delivery.timeout_seconds = _read_float(
        "TIMECAPSULE_DELIVERY_TIMEOUT", config.delivery.timeout_seconds
    )
    config.delivery.max_retries = _read_int(
        "TIMECAPSULE_DELIVERY_MAX_RETRIES", config.delivery.max_retries
    )

    endpoint = os.environ.get("TIMECAPSULE_MAIL_ENDPOINT")
    if endpoint:
        config.notifier.endpoint = endpoint
    else:
        logger.warning("TIMECAPSULE_MAIL_ENDPOINT not set - notifications will fail")
    config.notifier.api_key = os.environ.get("TIMECAPSULE_MAIL_API_KEY")
    from_address = os.environ.get("TIMECAPSULE_MAIL_FROM")
    if from_address:
        config.notifier.from_address = from_address
    base_url = os.environ.get("TIMECAPSULE_PUBLIC_BASE_URL")
    if base_url:
        config.notifier.public_base_url = base_url.rstrip("/")

    log_level = os.environ.get("TIMECAPSULE_LOG_LEVEL")
    if log_level:
        config.logging.level = log_level.upper()

    log_file = os.environ.get("TIMECAPSULE_LOG_FILE")
    if log_file:
        config.logging.file = log_file

    return config


def setup_logging(config: LoggingConfig) -> None:
    """Configure logging based on the provided configuration.

    Args:
        config: Logging configuration settings.
    """
    log_level = getattr(logging, config.level, logging.INFO)

    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(config.format))
    handlers.append(console_handler)

    if config.file:
        try:
            file_handler = logging.FileHandler(config.file)
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(config.format))
            handlers.append(file_handler)
        except OSError as e:
            logger.error(f"Failed to create log file {config.file}: {e}")

    logging.basicConfig(
        level=log_level,
        format=config.format,
        handlers=handlers,
    )

    logger.info(f"Logging configured with level: {config.level}")


def validate_config(config: AppConfig) -> bool:
    """Validate that the configuration is complete and valid.

    Args:
        config: Application configuration to validate.

    Returns:
        True if configuration is valid.
    """
    if config.database.max_retries < 1:
        logger.error("Database max_retries must be at least 1")
        return False

    if config.scheduler.tick_interval_seconds < 1:
        logger.error("Scheduler tick interval must be at least 1 second")
        return False

    if config.scheduler.batch_size < 1:
        logger.error("Scheduler batch size must be at least 1")
        return False

    if not is_valid_timezone(config.scheduler.default_timezone):
        logger.error(f"Invalid default time zone: {config.scheduler.default_timezone}")
        return False

    valid_intervals = [interval.value for interval in RecurrenceInterval]
    if config.scheduler.default_recurrence_interval not in valid_intervals:
        logger.error(
            f"Invalid default recurrence interval: "
            f"{config.scheduler.default_recurrence_interval}"
        )
        return False

    if config.delivery.timeout_seconds <= 0:
        logger.error("Delivery timeout must be positive")
        return False

    if config.delivery.max_retries < 1:
        logger.error("Delivery max_retries must be at least 1")
        return False

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.logging.level not in valid_log_levels:
        logger.error(f"Invalid log level: {config.logging.level}")
        return False

    return True
