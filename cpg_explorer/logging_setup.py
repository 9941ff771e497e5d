"""Logging setup shared by the CLI and the HTTP server."""

from __future__ import annotations

import logging

from rich.logging import RichHandler


def setup_logging(level: str = "INFO", verbose: bool = False) -> logging.Logger:
    """Install a Rich console handler on the root logger.

    Calling this more than once replaces the previous handlers instead of
    stacking duplicates.
    """
    log_level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.addHandler(
        RichHandler(
            level=log_level,
            rich_tracebacks=True,
            show_time=True,
            show_path=verbose,
        )
    )
    return logging.getLogger("cpg_explorer")
