"""Logging utilities."""

import logging
import sys


# HTTP and SSH libraries log every request and channel event at INFO/DEBUG
NOISY_LOGGERS = ("asyncio", "httpx", "httpcore", "paramiko")


def setup_logging(level: str = "INFO"):
    """Configure root logging for a build.

    Third-party loggers stay at WARNING unless the build itself runs at DEBUG,
    in which case the HTTP and SSH traffic is useful to see.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ],
        force=True,
    )

    third_party_level = logging.DEBUG if log_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)
    # paramiko.transport is chatty even at DEBUG about key exchange
    logging.getLogger("paramiko.transport").setLevel(max(third_party_level, logging.INFO))
