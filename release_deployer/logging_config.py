"""
Centralized logging configuration for release-deployer.

Console logging is always on; a rotating log file (human-readable or JSON) is
added when the configuration names one. Deployment lifecycle events also go
to a dedicated "release_deployer.deployments" logger, and the release tag,
slot and operation they carry are rendered by both formatters.
"""

import json
import logging
import logging.handlers
import re
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

DEPLOYMENT_LOGGER = "release_deployer.deployments"

# Record attributes set by log_deployment_operation()
DEPLOYMENT_FIELDS = ("operation", "slot", "version")


def _deployment_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {key: getattr(record, key) for key in DEPLOYMENT_FIELDS if hasattr(record, key)}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    SOURCE_FIELDS = (
        ("level", "levelname"),
        ("logger", "name"),
        ("module", "module"),
        ("function", "funcName"),
        ("line", "lineno"),
    )

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "message": record.getMessage(),
        }
        for key, attribute in self.SOURCE_FIELDS:
            entry[key] = getattr(record, attribute)
        entry.update(_deployment_fields(record))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Text formatter for the console and plain log files.

    Deployment fields are appended as a bracketed key=value suffix. Level
    names are coloured only when use_colors is set (console on a TTY).
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[2m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = False):
        self.use_colors = use_colors
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        fields = _deployment_fields(record)
        if fields:
            line += " [" + " ".join(f"{k}={v}" for k, v in fields.items()) + "]"

        color = self.LEVEL_COLORS.get(record.levelno) if self.use_colors else None
        if color:
            return f"{color}{line}{self.RESET}"
        return line


class ExpiringRotatingFileHandler(logging.handlers.RotatingFileHandler):
    """
    Size-rotated log file whose backups are also removed after max_age days.

    max_backups still caps the number of backups; max_age of 0 disables the
    age limit. Backups are pruned when the handler opens and after each
    rollover.
    """

    def __init__(self, filename: Path, max_age_days: int = 0, **kwargs: Any):
        super().__init__(filename, **kwargs)
        self.max_age_days = max_age_days
        self.prune_expired()

    def doRollover(self) -> None:
        super().doRollover()
        self.prune_expired()

    def backup_files(self) -> List[Path]:
        base = Path(self.baseFilename)
        pattern = re.compile(re.escape(base.name) + r"\.\d+$")
        return sorted(p for p in base.parent.iterdir() if pattern.match(p.name))

    def prune_expired(self) -> None:
        if self.max_age_days <= 0:
            return
        cutoff = time.time() - self.max_age_days * 86400
        for backup in self.backup_files():
            try:
                if backup.stat().st_mtime < cutoff:
                    backup.unlink()
            except OSError as e:
                # Logging from inside a handler would recurse
                sys.stderr.write(f"Failed to prune log backup {backup}: {e}\n")


def _level(name: str) -> int:
    name = name.upper()
    if name == "WARN":
        name = "WARNING"
    return getattr(logging, name, logging.INFO)


def setup_logging(
    console_level: str = "INFO",
    log_file: Optional[str] = None,
    file_level: str = "DEBUG",
    use_json: bool = False,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    max_age_days: int = 0,
) -> None:
    """
    Configure logging for release-deployer.

    Args:
        console_level: Console logging level
        log_file: Path of the rotating log file; console only when None
        file_level: File logging level
        use_json: Use JSON formatting for the file
        max_bytes: Max size per log file before rotation
        backup_count: Number of rotated files to keep
        max_age_days: Remove rotated files older than this many days (0 keeps them)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Clear existing handlers
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(_level(console_level))
    console_handler.setFormatter(HumanReadableFormatter(use_colors=sys.stdout.isatty()))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_formatter = StructuredFormatter() if use_json else HumanReadableFormatter()
        file_handler = ExpiringRotatingFileHandler(
            log_path,
            max_age_days=max_age_days,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setLevel(_level(file_level))
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    # Set third-party loggers to WARNING to reduce noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    root_logger.info(
        f"Logging initialized - Console: {console_level.upper()}, "
        f"File: {log_file or 'disabled'}, JSON: {use_json}"
    )


def configure_from_settings(logging_config: Any, verbose: bool = False) -> None:
    """Configure logging from the "logging" section of the deployer config."""
    setup_logging(
        console_level="DEBUG" if verbose else logging_config.level,
        log_file=logging_config.file,
        use_json=logging_config.json_format,
        max_bytes=logging_config.max_bytes,
        backup_count=logging_config.max_backups,
        max_age_days=logging_config.max_age,
    )


def log_deployment_operation(
    operation: str,
    success: bool,
    details: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
) -> None:
    """
    Log a deployment lifecycle operation.

    Args:
        operation: Operation type (cutover, rollback, stage, etc.)
        success: Whether operation succeeded
        details: Additional operation details (version, slot, ...)
        error: Error message if failed
    """
    logger = logging.getLogger(DEPLOYMENT_LOGGER)

    level = logging.INFO if success else logging.ERROR
    message = f"Deployment {operation}: {'SUCCESS' if success else 'FAILED'}"

    if error:
        message += f" - {error}"
    if details:
        message += f" - {json.dumps(details, default=str)}"

    extra = {"operation": operation}
    if details:
        for key in ("version", "slot"):
            if key in details:
                extra[key] = str(details[key])

    logger.log(level, message, extra=extra)
