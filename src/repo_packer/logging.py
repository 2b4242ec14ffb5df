from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path

_LOGGING_CONFIGURED = False


def setup_logging(
    filename: str | Path | None = None,
    *,
    debug: bool = False,
    force: bool = False,
) -> structlog.BoundLogger:
    """Set up structured logging for the repo_packer package.

    Logs always go to stderr (or to a file) so that stdout stays reserved for the
    streamed serialization.

    Args:
        filename: Optional path to a log file. If None, logs are written to stderr.
        debug: Lower the threshold to DEBUG (diagnostics, per-file token counts).
        force: Reconfigure even if logging was already set up (used by the CLI once
            the final settings are known).

    Returns:
        A structlog logger instance configured for the repo_packer package.
    """
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if not _LOGGING_CONFIGURED or force:
        level = logging.DEBUG if debug else logging.INFO
        handlers: list[logging.Handler] = []
        if filename:
            handlers.append(logging.FileHandler(str(filename), encoding="utf-8"))
        else:
            handlers.append(logging.StreamHandler(sys.stderr))

        logging.basicConfig(
            level=level,
            handlers=handlers,
            format="%(message)s",
            force=force,
        )
        structlog.configure(
            processors=[
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=False,
        )
        _LOGGING_CONFIGURED = True

    return structlog.get_logger("repo_packer")


logger = setup_logging()
