"""Logging setup for the CLI."""
import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(debug: bool = False, console: Optional[Console] = None) -> None:
    """Route all log records through a RichHandler on stderr."""
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=debug,
        rich_tracebacks=debug,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s", datefmt="[%X]"))
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, handlers=[handler], force=True)

    # SDK request logging is noise below WARNING unless debugging
    if not debug:
        logging.getLogger("azure").setLevel(logging.WARNING)
        logging.getLogger("urllib3").setLevel(logging.WARNING)
