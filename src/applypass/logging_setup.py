"""Process-wide logging configuration for CLI entry points."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

_NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy", "alembic", "uvicorn.access")


class _ThirdPartyNoiseFilter(logging.Filter):
    """Keep applypass logs; let other libraries through only at WARNING+."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("applypass"):
            return True
        return record.levelno >= logging.WARNING


def setup_logging(
    *,
    level: int | str = logging.INFO,
    log_file: Path | None = None,
) -> None:
    """Install one stderr handler (and an optional file handler) on the root logger.

    Call once, before the first log record is emitted.
    """

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(_ThirdPartyNoiseFilter())
    root.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.captureWarnings(True)
