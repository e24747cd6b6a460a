"""Process-wide logging setup."""

import logging
import sys
from typing import Optional

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once; later calls only adjust the level."""
    root = logging.getLogger()
    resolved = getattr(logging, (level or "INFO").upper(), logging.INFO)
    if not any(getattr(h, "_genbook", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._genbook = True
        root.addHandler(handler)
    root.setLevel(resolved)
