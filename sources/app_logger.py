# app_logger.py
"""
A small wrapper around the standard library `logging` module.
Every part of strap-sync imports `logger` from here, so there is a single
source of truth for log configuration.

The console shows INFO and above (or whatever ``STRAP_LOG_LEVEL`` asks for),
while the file handler keeps the full DEBUG trace of a long unattended sync.
"""

import logging
import os

# ----------------------------------------------------------------------
# 1️⃣ Format & level
# ----------------------------------------------------------------------
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
LOG_FILE = os.environ.get("STRAP_LOG_FILE", "strap_sync.log")
LOG_LEVEL = os.environ.get("STRAP_LOG_LEVEL", "INFO").upper()

formatter = logging.Formatter(LOG_FORMAT)

logger = logging.getLogger("StrapSync")   # dedicated namespace
logger.setLevel(logging.DEBUG)            # handlers do the filtering
logger.propagate = False                  # keep bleak / root output separate

# ----------------------------------------------------------------------
# 2️⃣ Console handler – what the operator sees
# ----------------------------------------------------------------------
console_handler = logging.StreamHandler()
console_handler.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
console_handler.setFormatter(formatter)
logger.addHandler(console_handler)

# ----------------------------------------------------------------------
# 3️⃣ File handler – full trace, including per-frame DEBUG lines
# ----------------------------------------------------------------------
file_handler = logging.FileHandler(LOG_FILE, encoding="utf-8", delay=True)
file_handler.setLevel(logging.DEBUG)
file_handler.setFormatter(formatter)
logger.addHandler(file_handler)


def set_console_level(level: str) -> None:
    """Change the console verbosity at runtime (``--verbose`` flag)."""
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
