"""
Console logging for batch hosts.

The engine only ever talks to standard `logging` loggers (the "microbatch"
hierarchy by default). configure() is a convenience for console hosts: it
attaches a single rich handler so engine traces and failure reports render with
rich tracebacks on stderr.
"""
import logging

from rich.console import Console
from rich.logging import RichHandler

from .utils import Unset


class _ConsoleHandler(RichHandler):
    pass


def configure(level=logging.INFO, *, colorful=True, console=Unset, name="microbatch"):
    """
    Install (or replace) the rich console handler of logger `name`.

    Parameters
    - level: logging level applied to the logger.
    - colorful: disable styles when False (plain text output).
    - console: rich Console to write to (stderr console by default).
    - name: logger to configure.

    Returns
    - the configured logging.Logger.
    """
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        if isinstance(handler, _ConsoleHandler):
            logger.removeHandler(handler)

    handler = _ConsoleHandler(
        console=Console(stderr=True, no_color=not colorful) if console is Unset else console,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


__all__ = ("configure",)
