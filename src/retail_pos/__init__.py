"""Retail GST point of sale backed by an Excel master workbook.

Importing the package configures the ``retail_pos`` logger shared by the
catalog, sale, invoice and CLI modules. INFO and above go to a rotating file
under ``.logs/`` in the project root; only warnings reach stderr, so the JSON
the CLI prints on stdout is never interleaved with log lines.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = PROJECT_ROOT / ".logs"
LOG_FILE = LOG_DIR / "retail_pos.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 5


def _build_file_handler(log_file: Path, formatter: logging.Formatter) -> Optional[RotatingFileHandler]:
    """Return the rotating INFO handler for ``log_file``.

    ``None`` is returned, with a warning on stderr, when the directory cannot
    be created or the file cannot be opened; the POS keeps working with
    console logging only.
    """

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_file,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as exc:
        print(
            f"Warning: unable to initialize log file at '{log_file}': {exc}",
            file=sys.stderr,
        )
        return None

    handler.setLevel(logging.INFO)
    handler.setFormatter(formatter)
    return handler


def _configure_logging() -> logging.Logger:
    """Attach the file and stderr handlers to the package logger once."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    file_handler = _build_file_handler(LOG_FILE, formatter)
    if file_handler is not None:
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.info("Retail POS logging ready (log file: %s)", LOG_FILE)
