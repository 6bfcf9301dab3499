import json
import logging
import sys
import time

from config import config


def get_logger(name: str = "erynoa.passkey", level=None) -> logging.Logger:
    """One JSON line per record on stdout, UTC timestamps."""
    logger = logging.getLogger(name)
    logger.setLevel(level or getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            fmt=json.dumps({
                "ts": "%(asctime)s",
                "level": "%(levelname)s",
                "name": "%(name)s",
                "msg": "%(message)s"
            }),
            datefmt="%Y-%m-%dT%H:%M:%SZ",
        )
        formatter.converter = time.gmtime
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
