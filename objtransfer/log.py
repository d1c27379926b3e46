"""Logging setup for command-line runs.

Library modules only create module loggers; handlers are installed here,
once, by the CLI.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(level: int = logging.INFO, console: Optional[Console] = None) -> None:
    """Route the ``objtransfer`` loggers through a RichHandler."""
    handler = RichHandler(
        console=console or Console(stderr=True, legacy_windows=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    logger = logging.getLogger("objtransfer")
    logger.handlers = [handler]
    logger.setLevel(level)
    logger.propagate = False

    # boto is chatty at DEBUG
    for name in ("botocore", "boto3", "urllib3", "httpx"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
