# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Structured logging for cmdflow.

One stdout handler lives on the package root logger ("cmdflow"); every other
cmdflow logger is a plain child that propagates to it, so a record is written
exactly once in the configured format.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

PACKAGE_LOGGER = "cmdflow"

# LogRecord attributes that are not caller-supplied extra= fields
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, extra= fields merged in"""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update({k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable single-line records"""

    def __init__(self):
        super().__init__(fmt="%(asctime)s %(levelname)-7s [%(name)s] %(message)s", datefmt="%H:%M:%S")


def configure_package_logging(log_level: str = "INFO", log_format: str = "json") -> logging.Logger:
    """
    (Re)install the single cmdflow handler.

    Safe to call repeatedly: the previous handler is replaced, never stacked.
    """
    root = logging.getLogger(PACKAGE_LOGGER)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())
    root.addHandler(handler)
    return root


def get_logger(name: str) -> logging.Logger:
    """Logger under the cmdflow namespace; carries no handlers of its own."""
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


def get_service_logger(service_name: str) -> logging.Logger:
    """
    Logger for a service layer (commands, workflow, api).

    The first call configures the package handler from Config when nothing
    has done so yet.
    """
    if not logging.getLogger(PACKAGE_LOGGER).handlers:
        from cmdflow.core.config import get_config
        config = get_config()
        configure_package_logging(config.log_level, config.log_format)
    return get_logger(f"service.{service_name}")


def log_event(logger: logging.Logger, event: str, level: str = "INFO", **fields: Any) -> None:
    """Emit event as the message with fields attached as structured extras"""
    logger.log(getattr(logging, level.upper(), logging.INFO), event, extra=fields)
