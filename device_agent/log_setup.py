"""
Logging configuration for the device jobs agent.

Adds:
- Service-specific loggers with dedicated log files and formatters
- Env/CLI-driven log level selection via `LOG_LEVEL` and `set_log_level()`
- Standard operator markers for success/warn/failure (✅, ⚠️, ❌) with ASCII fallback
- Mapping from the CLI verbosity choices to logging levels
"""
import logging
import logging.handlers
import os
import threading
from pathlib import Path
from typing import Dict, Optional

# Operator-facing log markers (emojis), with optional ASCII fallback via LOG_MARKERS_ASCII=true
ASCII_FALLBACK = os.getenv("LOG_MARKERS_ASCII", "false").lower() in {"1", "true", "yes"}
OK_MARK = "OK" if ASCII_FALLBACK else "✅"
WARN_MARK = "WARN" if ASCII_FALLBACK else "⚠️"
FAIL_MARK = "FAIL" if ASCII_FALLBACK else "❌"

LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))

ROOT_LOGGER_NAME = "device_agent"

_service_loggers: Dict[str, logging.Logger] = {}
_logger_lock = threading.RLock()

SERVICE_CONFIGS = {
    "agent": {"file": "agent.log", "level": "INFO"},
    "jobs": {"file": "jobs.log", "level": "INFO"},
    "transport": {"file": "transport.log", "level": "INFO"},
    "watchdog": {"file": "watchdog.log", "level": "INFO"},
}

# CLI verbosity choices -> logging levels. "none" is handled by disable_logging().
VERBOSITY_LEVELS = {
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
}
VERBOSITY_CHOICES = list(VERBOSITY_LEVELS) + ["none"]

_LEVEL_NAMES = {
    "CRITICAL": logging.CRITICAL,
    "FATAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "TRACE": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}


def _get_log_level_from_env(level_str: Optional[str] = None) -> int:
    """Map LOG_LEVEL env var (or a verbosity name) to a logging level."""
    if level_str is None:
        level_str = os.getenv("LOG_LEVEL", "INFO")
    return _LEVEL_NAMES.get(level_str.upper(), logging.INFO)


def _file_logging_enabled() -> bool:
    return os.getenv("LOG_TO_FILE", "true").lower() in {"1", "true", "yes"}


def _create_service_logger(service_name: str, config: dict) -> logging.Logger:
    """Create a service-specific logger with its own console and rotating file handler."""
    logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{service_name}")

    if logger.handlers:
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()

    level_env_var = f"LOG_LEVEL_{service_name.upper()}"
    level_str = os.getenv(level_env_var, os.getenv("LOG_LEVEL", config.get("level", "INFO")))
    level = _get_log_level_from_env(level_str)
    logger.setLevel(level)

    # Keep service output out of the root logger to avoid duplicate messages
    logger.propagate = False

    formatter = logging.Formatter(
        f"%(asctime)s - [{service_name.upper()}] - %(levelname)s - %(message)s"
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if not _file_logging_enabled():
        return logger

    try:
        max_bytes = int(os.getenv(f"LOG_MAX_BYTES_{service_name.upper()}", "10485760"))
        if max_bytes <= 0:
            max_bytes = 10485760
    except (ValueError, TypeError):
        max_bytes = 10485760

    try:
        backup_count = int(os.getenv(f"LOG_BACKUP_COUNT_{service_name.upper()}", "5"))
        if backup_count < 0:
            backup_count = 5
    except (ValueError, TypeError):
        backup_count = 5

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            LOG_DIR / config["file"],
            maxBytes=max_bytes,
            backupCount=backup_count
        )
    except OSError as e:
        logger.warning(f"{WARN_MARK} File logging disabled for {service_name}: {e}")
        return logger

    file_handler.setFormatter(formatter)
    file_handler.setLevel(level)
    logger.addHandler(file_handler)

    return logger


def get_service_logger(service_name: str) -> logging.Logger:
    """Get or create a service-specific logger (thread-safe)."""
    with _logger_lock:
        if service_name in _service_loggers:
            return _service_loggers[service_name]

        if service_name not in SERVICE_CONFIGS:
            logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{service_name}")
            _service_loggers[service_name] = logger
            return logger

        logger = _create_service_logger(service_name, SERVICE_CONFIGS[service_name])
        _service_loggers[service_name] = logger
        return logger


def set_log_level(level_str: str, service_name: Optional[str] = None) -> None:
    """Adjust log level at runtime for one service or all of them (thread-safe)."""
    level = _get_log_level_from_env(level_str)

    with _logger_lock:
        if service_name:
            loggers = [_service_loggers[service_name]] if service_name in _service_loggers else []
        else:
            loggers = list(_service_loggers.values())

        for logger in loggers:
            logger.disabled = False
            logger.setLevel(level)
            for h in logger.handlers:
                h.setLevel(level)


def apply_verbosity(verbosity: str) -> None:
    """Apply a CLI verbosity choice to every service logger and to paho-mqtt."""
    verbosity = (verbosity or "info").lower()
    if verbosity not in VERBOSITY_CHOICES:
        raise ValueError(f"Invalid verbosity: {verbosity}. Must be one of {VERBOSITY_CHOICES}")

    paho_logger = logging.getLogger("paho.mqtt.client")
    if verbosity == "none":
        disable_logging()
        paho_logger.disabled = True
        return

    set_log_level(logging.getLevelName(VERBOSITY_LEVELS[verbosity]))
    paho_logger.disabled = False
    # paho only emits its own packet-level logs at trace verbosity
    paho_logger.setLevel(logging.DEBUG if verbosity == "trace" else logging.WARNING)


def disable_logging() -> None:
    """Silence every service logger."""
    with _logger_lock:
        for logger in _service_loggers.values():
            logger.disabled = True


logger = get_service_logger("agent")


def get_jobs_logger() -> logging.Logger:
    """Get the jobs logger."""
    return get_service_logger("jobs")


def get_transport_logger() -> logging.Logger:
    """Get the transport logger."""
    return get_service_logger("transport")


def get_watchdog_logger() -> logging.Logger:
    """Get the watchdog logger."""
    return get_service_logger("watchdog")
