"""Lightweight logging setup for applications embedding vaultshare."""

import logging
import sys
from typing import Optional

from vaultshare.config import Settings


def configure_logging(level: Optional[int] = None, settings: Optional[Settings] = None) -> None:
    # Root logger is configured once; an explicit level beats the settings one.
    if level is None:
        level = (settings or Settings.from_env()).log_level
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
    )
    logging.getLogger("vaultshare").setLevel(level)
