"""
Logging setup shared by the HTTP app, the serverless handler and the MCP server.
"""

import logging
import sys
from typing import Optional

from .config import AppConfig

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Client libraries that log every request at INFO/DEBUG
NOISY_LOGGERS = ('botocore', 'urllib3', 'opensearch', 'gremlinpython', 'aiohttp')


def _level(app_config: AppConfig) -> int:
    return getattr(logging, app_config.log_level.upper(), logging.INFO)


def setup_logging(app_config: Optional[AppConfig] = None) -> None:
    """
    Configure the root logger once per process.

    Args:
        app_config: AppConfig instance, uses default if None
    """
    if app_config is None:
        from .config import config as app_config

    level = _level(app_config)
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stdout)])

    library_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


def get_logger(name: str, app_config: Optional[AppConfig] = None) -> logging.Logger:
    """
    Get a module logger at the configured level.

    Args:
        name: Logger name (usually __name__)
        app_config: AppConfig instance, uses default if None

    Returns:
        Logger instance
    """
    if app_config is None:
        from .config import config as app_config

    logger = logging.getLogger(name)
    logger.setLevel(_level(app_config))
    return logger


def preview(text: Optional[str], limit: int = 100) -> str:
    """Truncate text for log lines."""
    if not text:
        return ''
    return text if len(text) <= limit else f'{text[:limit]}...'
