#!/usr/bin/env python3
"""
CENTRALIZED LOGGING CONFIGURATION
==================================

Purpose:
- Setup per-component loggers with rotating file handlers
- Isolate logs by worker: ingress, splitter, slice_executor, timeout_monitor
- Each logger has its own rotating log file (50MB, 10 backups)
- All logs also go to console with clean formatting

USAGE:
    from pulse_platform.logging.logger_config import setup_application_logging, get_component_logger

    # Setup once in main
    setup_application_logging(log_dir="logs", level="INFO")

    # Get logger in each module
    logger = get_component_logger("splitter")
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Dict

# Standard format: [TIMESTAMP] [LEVEL] [COMPONENT] [MESSAGE]
LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s'
LOG_DATETIME_FORMAT = '%Y-%m-%d %H:%M:%S'

# Key → logger name.
# Loggers using __name__ (e.g. 'pulse_platform.brokers.http.client') are
# children of their parent logger, so parent package loggers are registered too.
COMPONENT_NAMES = {
    # ---- Process / supervision ----
    'service':         'PULSE_SERVICE',

    # ---- Order pipeline ----
    'ingress':         'INGRESS',
    'splitter':        'SPLITTER',
    'slice_executor':  'SLICE_EXECUTOR',
    'timeout_monitor': 'TIMEOUT_MONITOR',

    # ---- Collaborators (use __name__) ----
    'broker':          'pulse_platform.brokers',
    'persistence':     'pulse_platform.persistence',
    'api':             'pulse_platform.api',
}

_log_dir: Optional[Path] = None
_log_level: str = 'INFO'
_console_handler: Optional[logging.StreamHandler] = None
_component_handlers: Dict[str, logging.handlers.RotatingFileHandler] = {}


def setup_application_logging(
    log_dir: str = 'logs',
    level: str = 'INFO',
    max_bytes: int = 50 * 1024 * 1024,  # 50 MB per file
    backup_count: int = 10,
    quiet_waitress: bool = True
) -> None:
    """
    Initialize application-wide logging with per-component rotating handlers.

    Call once at process startup, before any worker starts. Calling it again
    replaces the previous handlers instead of stacking new ones.

    Args:
        log_dir: Directory for the log files (created if missing)
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        max_bytes: Size at which a file rotates
        backup_count: Rotated files kept per component
        quiet_waitress: Raise waitress queue chatter to WARNING
    """
    global _log_dir, _log_level, _console_handler

    _log_dir = Path(log_dir)
    _log_level = level.upper()
    _log_dir.mkdir(parents=True, exist_ok=True)
    numeric_level = getattr(logging, _log_level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATETIME_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    _console_handler = logging.StreamHandler(sys.stdout)
    _console_handler.setLevel(numeric_level)
    _console_handler.setFormatter(formatter)
    root_logger.addHandler(_console_handler)

    # catch-all: anything outside a registered component lands here
    root_logger.addHandler(_rotating_handler("application.log", max_bytes, backup_count, formatter))

    if quiet_waitress:
        logging.getLogger('waitress.queue').setLevel(logging.WARNING)

    for key, component_name in COMPONENT_NAMES.items():
        component_logger = logging.getLogger(component_name)
        previous = _component_handlers.pop(component_name, None)
        if previous is not None:
            component_logger.removeHandler(previous)
            previous.close()

        handler = _rotating_handler(f"{key}.log", max_bytes, backup_count, formatter)
        _component_handlers[component_name] = handler
        component_logger.addHandler(handler)


def _rotating_handler(
    filename: str,
    max_bytes: int,
    backup_count: int,
    formatter: logging.Formatter,
) -> logging.handlers.RotatingFileHandler:
    handler = logging.handlers.RotatingFileHandler(
        _log_dir / filename,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8',
    )
    handler.setLevel(getattr(logging, _log_level))
    handler.setFormatter(formatter)
    return handler


def get_component_logger(component_key: str) -> logging.Logger:
    """
    Logger for one pipeline component, e.g. get_component_logger('slice_executor').

    Unknown keys raise ValueError so a typo never silently logs nowhere.
    """
    if component_key not in COMPONENT_NAMES:
        raise ValueError(f"Unknown component: {component_key}. Must be one of {list(COMPONENT_NAMES.keys())}")

    return logging.getLogger(COMPONENT_NAMES[component_key])


def get_log_files() -> Dict[str, Path]:
    """Component logger name -> active log file path."""
    return {
        name: Path(handler.baseFilename)
        for name, handler in _component_handlers.items()
    }
