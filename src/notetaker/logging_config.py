"""
Logging configuration for the NoteTaker CLI.

Library loggers are quieted by default; --verbose turns everything on.
"""

import logging
import sys

NOISY_LOGGERS = ("sqlalchemy", "aiosqlite", "httpx", "httpcore", "google_genai")


def configure_logging(verbose: bool = False) -> None:
    """
    Attach a stderr handler to the root logger.

    Args:
        verbose: If True, log at DEBUG including library output.
            Otherwise only warnings and errors are shown.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.ERROR)
