"""
Package logger.

Every module logs through the shared ``log`` object:

    from engine_selector.utils.logger import log

    log.info(f"Loaded {count} engine manifests from {path}")

Nothing is printed until ``setup_logging()`` installs a handler. The CLI
calls it once at startup; library users may configure logging themselves.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "engine_selector"

log = logging.getLogger(LOGGER_NAME)
log.addHandler(logging.NullHandler())

_handler: Optional[RichHandler] = None


def setup_logging(verbose: bool = False, console: Optional[Console] = None) -> logging.Logger:
    """
    Install a rich console handler on the package logger.

    Safe to call more than once; later calls only adjust the level.

    Args:
        verbose: Log DEBUG records when True, WARNING and above otherwise
        console: Console to write to (defaults to stderr)

    Returns:
        The configured package logger
    """
    global _handler

    level = logging.DEBUG if verbose else logging.WARNING

    if _handler is None:
        _handler = RichHandler(
            console=console or Console(stderr=True),
            show_time=False,
            show_path=verbose,
            markup=False,
        )
        _handler.setFormatter(logging.Formatter("%(message)s"))
        log.addHandler(_handler)
        log.propagate = False

    _handler.setLevel(level)
    log.setLevel(level)
    return log
