"""Logging set-up and small helpers."""

import logging
import os
from urllib.parse import urlparse

import coloredlogs


def get_url_domain(url: str) -> str:
    """Redact URL so that only domain is displayed.

    Some services e.g. infura use path as an API key.
    """
    parsed = urlparse(url)
    if parsed.port in (80, 443, None):
        return parsed.hostname
    else:
        return f"{parsed.hostname}:{parsed.port}"


def setup_console_logging(default_log_level="info") -> logging.Logger:
    """Set up coloured log output.

    - Log level is read from ``LOG_LEVEL`` environment variable
    - Tune down some noisy dependency library logging

    :return:
        Root logger
    """

    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level, None)
    assert isinstance(numeric_level, int), f"No log level: {level}"

    fmt = "%(asctime)s %(name)-36s %(levelname)-8s %(message)s"
    date_fmt = "%H:%M:%S"
    coloredlogs.install(level=numeric_level, fmt=fmt, datefmt=date_fmt)

    # Mute noise
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    return logging.getLogger()
