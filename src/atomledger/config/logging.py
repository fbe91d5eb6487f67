"""Logging bootstrap for atomledger entry points."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Initialise the root logger once.

    Defaults to INFO and a terse single-line format. Pass ``force=True`` to
    reconfigure during tests or when an embedding service already installed
    handlers.
    """

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        force=force,
    )
    # SQL echo is controlled through the engine, not the root level
    logging.getLogger("sqlalchemy.engine").setLevel(max(level, logging.WARNING))
