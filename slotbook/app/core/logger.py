"""Logger facade.

``get_logger`` for modules, ``configure_logging`` for entrypoints (CLI, API).
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

__all__ = ["get_logger", "configure_logging"]

_CONFIGURED = False


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name or __name__)


def configure_logging(
    level: str | int = "INFO", log_file: str | None = "slotbook.log", *, stderr: bool = False
) -> None:
    """Console via Rich (INFO+), file WARNING+ only. Safe to call twice.

    ``stderr=True`` keeps stdout clean for command output.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    if isinstance(level, str):
        level = getattr(logging, level.strip().upper(), logging.INFO)

    handlers: list[logging.Handler] = [
        RichHandler(
            console=Console(stderr=stderr),
            rich_tracebacks=True,
            markup=False,
            show_time=True,
            show_level=True,
            show_path=False,
            log_time_format="%H:%M:%S",
        )
    ]
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.WARNING)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))
        handlers.append(file_handler)

    logging.basicConfig(level=level, format="%(message)s", handlers=handlers)

    # Reduce noisy logs, keep warnings
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("alembic").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    _CONFIGURED = True
