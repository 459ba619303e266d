"""Logging set-up for the escrow ledger.

``get_logger(name)`` attaches the package handlers on first use. LOG_LEVEL
selects the level (default INFO) and LOG_FILE, when set, adds a file sink next
to the console.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_configured = False


def _handlers(log_file: str) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if not log_file:
        return handlers
    path = Path(log_file)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding='utf-8'))
    except OSError as exc:
        logging.getLogger(__name__).warning('Cannot log to %s (%s); console only', path, exc)
    return handlers


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Install the console (and optional file) handlers on the root logger once."""
    global _configured
    if _configured:
        return
    _configured = True

    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    numeric = getattr(logging, level_name, logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(numeric)
    for handler in _handlers(log_file if log_file is not None else os.getenv('LOG_FILE', '')):
        handler.setFormatter(formatter)
        root.addHandler(handler)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
