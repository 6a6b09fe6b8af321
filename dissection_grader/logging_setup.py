"""
Logging configuration for the CLI.

Library modules only create module-level loggers; the application entry
point decides where records go.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "INFO", console: Console | None = None) -> None:
    """
    Route log records through rich.

    Args:
        level: Root log level name.
        console: Console to write to. Defaults to stderr.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(name)s - %(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console or Console(stderr=True),
                rich_tracebacks=True,
                show_path=False,
            )
        ],
        force=True,
    )
    # SQL echo is controlled by settings.database_echo, not the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
