from __future__ import annotations

import logging
import os

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_configured = False


def configure_logging(level: str | None = None) -> None:
    """Install a root handler once; later calls only adjust the level."""
    global _configured
    resolved = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if not _configured:
        logging.basicConfig(format=_LOG_FORMAT)
        _configured = True
    logging.getLogger("omnidesk").setLevel(resolved)
