# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.


"""Logging configuration for BucketPool.

All modules log through the ``bucketpool`` logger. Its level defaults to INFO
and can be changed with the ``BUCKETPOOL_LOG_LEVEL`` environment variable
(a level name such as ``DEBUG`` or ``WARNING``).
"""

import logging
import os
import sys
from typing import Optional, TextIO

LOG_LEVEL_ENV = "BUCKETPOOL_LOG_LEVEL"

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def level_from_env(default: int = logging.INFO) -> int:
    """Read the log level named by BUCKETPOOL_LOG_LEVEL.

    Unknown names fall back to the default.
    """
    raw = os.environ.get(LOG_LEVEL_ENV, "").strip().upper()
    if not raw:
        return default
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else default


def setup_logger(
    name: str = "bucketpool",
    level: Optional[int] = None,
    format_string: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Setup and configure a logger for BucketPool.

    Calling it again replaces the previous handler, so an embedding
    application can redirect pool logs after import.

    Args:
        name: Logger name
        level: Logging level; read from the environment when omitted
        format_string: Custom format string for log messages
        stream: Output stream, stdout by default

    Returns:
        Configured logger instance
    """
    if level is None:
        level = level_from_env()

    logger = logging.getLogger(name)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))
    logger.addHandler(handler)

    return logger


# Default logger instance
logger = setup_logger()
