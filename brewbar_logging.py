"""Logging setup for BrewBar: stderr with a [BrewBar] prefix, plus an optional file."""

from __future__ import annotations

import logging
import pathlib
import sys
from typing import Optional

logger = logging.getLogger(__name__)


def configure_logging(log_path: Optional[pathlib.Path], level: int = logging.INFO) -> None:
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(logging.Formatter("[BrewBar] %(levelname)s %(name)s: %(message)s"))
    root.addHandler(stream)

    if log_path is not None:
        try:
            file_handler = logging.FileHandler(log_path)
        except OSError as exc:
            logger.warning("cannot open log file %s: %s", log_path, exc)
            return
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        root.addHandler(file_handler)
