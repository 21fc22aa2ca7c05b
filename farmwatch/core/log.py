import logging
from logging.handlers import RotatingFileHandler

from .config import settings

_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def configure_logging(level: int = logging.INFO, log_file: str | None = None) -> None:
    logger = logging.getLogger()
    logger.setLevel(level)

    # Idempotent: lifespan may run more than once in tests
    if getattr(logger, "_farmwatch_configured", False):
        return

    fmt = logging.Formatter(_FORMAT)

    # Console
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    # Rotating file (avoid filling SD card)
    path = log_file if log_file is not None else settings.log_file
    if path:
        fh = RotatingFileHandler(path, maxBytes=2_000_000, backupCount=5)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    # Silence noisy httpx request logging
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("pymodbus").setLevel(logging.WARNING)

    logger._farmwatch_configured = True
