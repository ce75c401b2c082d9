"""Logging configuration helpers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_NETWORK_LOGGERS = ("botocore", "boto3", "urllib3", "aiohttp.access")


def configure_logging(
    level: str = "INFO", *, log_path: Optional[Path] = None, log_network: bool = False
) -> None:
    """Configure root logging handlers.

    Parameters
    ----------
    level:
        Log level name, e.g. "INFO".
    log_path:
        Optional filesystem path for a file handler. When absent, only console logging is configured.
    log_network:
        When true, leave the AWS SDK and HTTP libraries at the root level so request traffic is visible.
    """

    logging.captureWarnings(True)

    for handler in list(logging.getLogger().handlers):
        logging.getLogger().removeHandler(handler)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=_FORMAT,
    )

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(logging.Formatter(_FORMAT))
        logging.getLogger().addHandler(file_handler)

    if not log_network:
        for name in _NETWORK_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
