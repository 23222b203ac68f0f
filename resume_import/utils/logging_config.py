"""Rotating file + console logging setup, plus structured worker metrics."""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

metrics_logger = logging.getLogger("resume_import.metrics")


def setup_logging(log_dir: str = "logs", level: int = logging.INFO, stream=None) -> logging.Logger:
    """Configure application logging with rotating file and console output."""
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("resume_import")
    logger.setLevel(level)

    # Clear existing handlers to avoid duplicates on re-init
    logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Rotating file handler: 5MB per file, keep 3 backups
    file_handler = RotatingFileHandler(
        log_path / "resume_import.log",
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # Console handler
    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


def log_metric(event: str, **fields) -> None:
    """Log one structured worker event as ``<event> {json fields}``."""
    metrics_logger.info("%s %s", event, json.dumps(fields, default=str, sort_keys=True))
