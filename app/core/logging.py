import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from app.config import settings


def setup_logging(log_dir: Optional[str] = None):
    """
    Configure Loguru logging.
    Should be called once by the process embedding the referral engine.
    """
    log_path = Path(log_dir or settings.LOG_DIR)

    # Remove default handler
    logger.remove()

    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
    )

    # Console handler
    logger.add(
        sys.stdout,
        format=log_format,
        level="DEBUG" if settings.DEBUG else "INFO",
        colorize=True,
    )

    # File handler for errors (code generation exhaustion, storage failures)
    logger.add(
        log_path / "error.log",
        format=log_format,
        level="ERROR",
        rotation="10 MB",
        retention="30 days",
        compression="zip",
    )

    # File handler for all logs (in production)
    if not settings.DEBUG:
        logger.add(
            log_path / "referral.log",
            format=log_format,
            level="INFO",
            rotation="50 MB",
            retention="14 days",
            compression="zip",
        )

    logger.info("Logging configured successfully")
