import json
import logging
import sys
from typing import Optional

_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class KeyValueFormatter(logging.Formatter):
    """Plain log line followed by the record's ``extra`` fields as sorted JSON."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = {k: v for k, v in vars(record).items() if k not in _RESERVED}
        if fields:
            line = f"{line} {json.dumps(fields, sort_keys=True, default=str)}"
        return line


def configure_logging(name: str, level: Optional[str] = None) -> logging.Logger:
    """Simple structured logger to keep output greppable for workers."""
    logger = logging.getLogger(name)
    if level:
        logger.setLevel(level.upper())
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    formatter = KeyValueFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )
    handler.setFormatter(formatter)

    if not level:
        logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def null_logger() -> logging.Logger:
    """Logger that discards everything; the default when a component gets none."""
    logger = logging.getLogger("outbox_relay.null")
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
        logger.propagate = False
    return logger
