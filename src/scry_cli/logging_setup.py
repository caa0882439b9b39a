# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Union


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


def setup_logging(log_dir: Union[str, os.PathLike] = "logs", level: int = logging.INFO):
    """Send library logs to a rotating JSON file instead of the terminal."""
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    # Use the same named logger as the rest of the library
    logger = logging.getLogger("scry_auth")
    logger.setLevel(level)

    # The chat UI owns the terminal
    logger.propagate = False

    # Use a rotating file handler to keep log files from growing too large
    handler = RotatingFileHandler(
        os.path.join(log_dir, "scry.log"),
        maxBytes=5 * 1024 * 1024,  # 5 MB
        backupCount=2,
        encoding="utf-8",
    )
    handler.setFormatter(JsonFormatter())

    # Add handler only if it hasn't been added before
    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        logger.addHandler(handler)
    else:
        handler.close()

    return logger
