# utils/logging_config.py
from __future__ import annotations
import logging
import sys

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    *,
    level: int | str = logging.INFO,
    fmt: str = DEFAULT_FORMAT,
    datefmt: str = DEFAULT_DATEFMT,
    force: bool = False,
    stream=None,
) -> None:
    """
    Configure root logging once, in the entry point.

    Compiler and runtime modules only call logging.getLogger(__name__).
    `stream` defaults to stdout; the stdio transport needs stderr so log
    lines do not corrupt the protocol stream.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    handlers = [logging.StreamHandler(stream or sys.stdout)]
    logging.basicConfig(
        level=level,
        format=fmt,
        datefmt=datefmt,
        handlers=handlers,
        force=force,
    )

    # quiet noisy libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
