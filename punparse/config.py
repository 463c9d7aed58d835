import logging
import os
import time

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# ============================================================================
# Global Logging Configuration
# ============================================================================


class UppercaseFormatter(logging.Formatter):
    """Custom formatter with uppercase month abbreviation and optional run_id."""
    def formatTime(self, record, datefmt=None):
        ct = self.converter(record.created)
        if datefmt:
            s = time.strftime(datefmt, ct)
            return s.upper()
        else:
            return super().formatTime(record, datefmt)

    def format(self, record):
        # Add run_id to record if available
        if not hasattr(record, 'run_id'):
            record.run_id = _current_run_id
        return super().format(record)


# Global run ID for logging context
_current_run_id = ""


def set_run_id(run_id: str):
    """Set the current migration run ID for logging context."""
    global _current_run_id
    _current_run_id = run_id if run_id else ""


def clear_run_id():
    """Clear the current run ID."""
    global _current_run_id
    _current_run_id = ""


# Configure root logger to apply format globally to all loggers
_root_logger = logging.getLogger()
_root_logger.setLevel(logging.INFO)

# Remove any existing handlers
for handler in _root_logger.handlers[:]:
    _root_logger.removeHandler(handler)

_handler = logging.StreamHandler()
_formatter = UppercaseFormatter(
    fmt="[%(levelname)s] [%(asctime)s] [%(threadName)s] [%(run_id)s] %(message)s",
    datefmt="%d-%b %H:%M:%S"
)
_handler.setFormatter(_formatter)
_root_logger.addHandler(_handler)

# SQLAlchemy installs its own handler when echo is enabled; keep it on ours
for lib_name in ["sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool"]:
    lib_logger = logging.getLogger(lib_name)
    for handler in lib_logger.handlers[:]:
        lib_logger.removeHandler(handler)
    lib_logger.propagate = True
    lib_logger.setLevel(logging.WARNING)


def _default_num_workers() -> int:
    return (os.cpu_count() or 1) + 1


class PunParseSettings(BaseSettings):
    """Migration settings.

    Read from environment variables with the PUNPARSE_ prefix (or a .env
    file). Command-line options override these for a single run.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PUNPARSE_",
        case_sensitive=False,
        extra="ignore"
    )

    # === Destination ===
    table_prefix: str = ""

    # === Source ===
    # strptime pattern matching the board's configured date + time format
    date_format: str = "%Y-%m-%d %H:%M:%S"

    # === Scheduling ===
    num_workers: int = Field(default_factory=_default_num_workers)
    # Files submitted to the pool but not finished yet. Keeps memory bounded
    # on exports with hundreds of thousands of pages.
    max_pending_files: int = 16

    # Topic ID given to posts whose topic was never found
    sentinel_topic_id: int = 0

    log_level: str = "INFO"


settings = PunParseSettings()


# ============================================================================
# Logging
# ============================================================================


def get_logger(name: str) -> logging.Logger:
    """Get or create a logger with the configured log level.

    Logging is configured globally, so this just returns a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(settings.log_level)
    return logger
