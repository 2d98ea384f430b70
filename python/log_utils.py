"""
Logging helpers shared by the services and the HTTP layer
"""

import logging
import re
import sys
from pathlib import Path
from typing import Optional

from config_manager import LoggingConfig


def sanitize_for_logging(text: str) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns, and other control characters
    that could be used to inject fake log entries.

    Args:
        text: User input text

    Returns:
        Sanitized text safe for logging
    """
    if not text:
        return ''
    sanitized = re.sub(r'[\r\n\x00-\x1f\x7f-\x9f]', ' ', str(text))
    sanitized = re.sub(r'\s+', ' ', sanitized).strip()
    return sanitized[:500] if len(sanitized) > 500 else sanitized


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """Configure root logging from the logging section of config.yaml"""
    config = config or LoggingConfig()
    handlers = []

    if config.console:
        handlers.append(logging.StreamHandler(sys.stdout))

    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, config.level.upper(), logging.INFO),
        format=config.format,
        handlers=handlers or None,
        force=True
    )
