"""Logging setup.

The curses display owns the terminal, so records only reach the screen in
plain mode with debugging on. Otherwise they go to a log file, or nowhere.
"""

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(log_file: Optional[str] = None, debug: bool = False, use_tui: bool = True) -> None:
    logger = logging.getLogger("liverun")
    level = logging.DEBUG if debug else logging.INFO

    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file)
    elif debug and not use_tui:
        handler = logging.StreamHandler()
    else:
        logger.addHandler(logging.NullHandler())
        logger.propagate = False
        return

    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
