from __future__ import annotations
import logging

from testix.config import LOG_LEVEL


def setup_console_logging(level: int | str = LOG_LEVEL) -> None:
    """
    Call once at app start. Prints engine logs to console.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level)
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    if root.handlers:
        # already configured (avoid duplicates)
        root.setLevel(level)
        return

    root.setLevel(level)
    h = logging.StreamHandler()
    fmt = logging.Formatter(
        "[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    h.setFormatter(fmt)
    root.addHandler(h)
