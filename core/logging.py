"""
Unified Logging Configuration

This module sets up a centralized logging system for the entire application.
All modules should import and use the logger from this module instead of
using print() statements.

Usage:
    from core.logging import logger

    logger.debug("Detailed debugging information")
    logger.info("General informational messages")
    logger.warning("Warning messages for potentially harmful situations")
    logger.error("Error messages for serious problems")

Log Levels (from most to least verbose):
    DEBUG    - Upstream calls and skipped items (e.g., "Upstream Request: GET https://...")
    INFO     - Connector outcomes (e.g., "trading212 test finished: connection=ok auth=ok")
    WARNING  - Degraded upstream behaviour (e.g., "CoinGecko rate limited, backing off")
    ERROR    - Unexpected failures that were converted into error results

Configuration:
    Log level is controlled by the LOG_LEVEL setting in .env file.

Credentials never reach the log: callers pass upstream URLs through
core.http.sanitize_message before handing them to the helpers below.
"""

import logging
import sys
from typing import Optional


ROOT_LOGGER_NAME = "folioagg"


def setup_logging(
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    include_timestamp: bool = True,
    include_module: bool = True
) -> logging.Logger:
    """
    Configure and return the application logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom log format string (uses default if None)
        include_timestamp: Include timestamp in log messages
        include_module: Include logger name in log messages

    Returns:
        logging.Logger: Configured logger instance

    Example:
        >>> logger = setup_logging(log_level="DEBUG")
        >>> logger.info("Application started")
        2024-01-01 12:00:00 [INFO] folioagg Application started
    """
    if log_format is None:
        format_parts = []

        if include_timestamp:
            format_parts.append("%(asctime)s")

        format_parts.append("[%(levelname)s]")

        if include_module:
            format_parts.append("%(name)s")

        format_parts.append("%(message)s")

        log_format = " ".join(format_parts)

    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True
    )

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)

    return root


# ============================================
# Initialize Logger with Settings
# ============================================

from core.config import settings  # noqa: E402

logger = setup_logging(log_level=settings.log_level)


# ============================================
# Convenience Functions
# ============================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger for a specific module or component.

    Args:
        name: Name for the logger (typically __name__)

    Returns:
        logging.Logger: Logger instance named "folioagg.<name>"

    Example:
        # In connectors/trading212/api_client.py:
        logger = get_logger(__name__)  # "folioagg.connectors.trading212.api_client"
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


# ============================================
# Log Helper Functions
# ============================================

def log_api_request(source: str, method: str, url: str) -> None:
    """
    Log an upstream request with consistent formatting.

    Args:
        source: Upstream name (e.g., "trading212", "coingecko")
        method: HTTP method
        url: Request URL, already sanitized

    Example:
        >>> log_api_request("coingecko", "GET", "https://api.coingecko.com/api/v3/simple/price")
        [DEBUG] Upstream Request: coingecko GET https://api.coingecko.com/api/v3/simple/price
    """
    logger.debug(f"Upstream Request: {source} {method} {url}")


def log_api_response(source: str, url: str, status: int, response_time: float = None) -> None:
    """
    Log an upstream response with status and timing information.

    Example:
        >>> log_api_response("coingecko", "https://.../simple/price", 200, 0.342)
        [DEBUG] Upstream Response: coingecko https://.../simple/price | Status: 200 | Time: 0.342s
    """
    time_str = f" | Time: {response_time:.3f}s" if response_time else ""
    logger.debug(f"Upstream Response: {source} {url} | Status: {status}{time_str}")
