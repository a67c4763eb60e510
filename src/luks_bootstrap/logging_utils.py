from __future__ import annotations

import logging
from typing import Any, Dict

try:
    from systemd.journal import JournalHandler
except Exception:  # pragma: no cover
    JournalHandler = None

LOGGER_NAME = "luks_bootstrap"


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if not logger.handlers:
        if JournalHandler:
            handler = JournalHandler(SYSLOG_IDENTIFIER="luks-bootstrap")
        else:
            handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def _journal_attached(logger: logging.Logger) -> bool:
    current = logger
    while current:
        handlers = getattr(current, "handlers", [])
        try:
            iter(handlers)
        except TypeError:
            handlers = []
        if JournalHandler and any(isinstance(h, JournalHandler) for h in handlers):
            return True
        if not getattr(current, "propagate", False):
            break
        current = getattr(current, "parent", None)
    return False


def log_structured(
    logger: logging.Logger,
    message: str,
    extra_fields: Dict[str, Any],
    level: int = logging.INFO,
) -> None:
    # JournalHandler turns extra into journal fields; plain handlers get key=value pairs.
    if _journal_attached(logger):
        logger.log(level, message, extra=extra_fields)
        return
    if extra_fields:
        fields = " ".join(f"{key}={value}" for key, value in extra_fields.items())
        logger.log(level, f"{message} {fields}")
        return
    logger.log(level, message)
