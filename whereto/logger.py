"""Logging setup"""

import sys
from loguru import logger
from pathlib import Path

from whereto.config import settings

# Create log directory
log_dir = Path(settings.log_dir)
log_dir.mkdir(exist_ok=True)

# Drop the default handler
logger.remove()

# Console
logger.add(
    sys.stdout,
    level=settings.log_level,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    colorize=True
)

# Application log file
logger.add(
    log_dir / "app.log",
    level="DEBUG",
    format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
    rotation="10 MB",
    retention="7 days",
    compression="zip"
)

# Shortlist and close decisions only
logger.add(
    log_dir / "decisions.log",
    level="INFO",
    format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}",
    filter=lambda record: record["extra"].get("decision", False),
    rotation="5 MB",
    retention="30 days",
    compression="zip"
)



def get_logger(name: str = None):
    """Return a logger instance"""
    if name:
        return logger.bind(name=name)
    return logger
