"""
Gateway logging setup.

The HTTP lifespan calls ``setup_logging()`` once; every module then logs
through ``logging.getLogger(__name__)`` with a bracketed component prefix
("[Registry]", "[Dispatcher]", "[Lifecycle]", ...). Records go to stdout and,
unless LOG_TO_FILE is off, to a rotating file:

    $GATEWAY_LOG_DIR/system.log   (default logs/gateway/system.log)
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

LOG_DIR = Path(os.getenv("GATEWAY_LOG_DIR", "logs/gateway"))
SYSTEM_LOG_FILE = LOG_DIR / "system.log"
MAX_LOG_SIZE = 10 * 1024 * 1024
BACKUP_COUNT = 5

LOG_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)-30s | %(message)s"
CONSOLE_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)-20s | %(message)s"

# Connection churn and request lines from these drown the gateway's own records
NOISY_LOGGERS = ("httpx", "httpcore", "websockets", "asyncio")

_installed: List[logging.Handler] = []


def setup_logging(
    level: Optional[str] = None,
    log_to_console: bool = True,
    log_to_file: bool = True,
    service_name: str = "gateway",
) -> None:
    """
    Attach the gateway handlers to the root logger. Later calls are no-ops.

    Args:
        level: DEBUG/INFO/WARNING/ERROR; falls back to LOG_LEVEL, then INFO
        log_to_console: Also log to stdout
        log_to_file: Also log to SYSTEM_LOG_FILE
        service_name: Logger used for the startup line
    """
    if _installed:
        return

    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_level = getattr(logging, level, logging.INFO)

    if log_to_file:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            SYSTEM_LOG_FILE, maxBytes=MAX_LOG_SIZE, backupCount=BACKUP_COUNT, encoding="utf-8"
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, "%Y-%m-%d %H:%M:%S"))
        _installed.append(file_handler)

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, "%H:%M:%S"))
        _installed.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in _installed:
        handler.setLevel(log_level)
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    destination = f"stdout + {SYSTEM_LOG_FILE.absolute()}" if log_to_file else "stdout"
    logging.getLogger(service_name).info(f"Logging initialized at {level} ({destination})")


def reset_logging() -> None:
    """Detach and close the handlers installed by setup_logging() (tests)."""
    root_logger = logging.getLogger()
    while _installed:
        handler = _installed.pop()
        root_logger.removeHandler(handler)
        handler.close()
