import os
import sys
import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_LEVELS = ("debug", "info", "warning", "error", "critical")

# third-party loggers routed through the same console handler
EXTERNAL_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi", "stripe")


def setup_logging(log_level: str = None):
    """Configure the root logger plus uvicorn, fastapi and the stripe SDK."""
    log_level = (log_level or os.getenv("LOG_LEVEL", "info")).lower()

    if log_level not in LOG_LEVELS:
        print(f"[Logger] Invalid LOG_LEVEL '{log_level}', defaulting to INFO")
        log_level = "info"

    level = getattr(logging, log_level.upper())

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColorFormatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    console_handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [console_handler]

    for logger_name in EXTERNAL_LOGGERS:
        external = logging.getLogger(logger_name)
        # the stripe SDK logs every request at INFO; keep it quieter than the app
        external.setLevel(max(level, logging.WARNING) if logger_name == "stripe" else level)
        external.handlers = [console_handler]
        external.propagate = False

    print(f"[Logger] Initialized ({log_level.upper()} mode, level={logging.getLevelName(level)})")


class Logger:
    def __init__(self, name: str = "app"):
        self.logger = logging.getLogger(name)

    def debug(self, msg, *args, **kwargs):
        self.logger.debug(msg, *args, **kwargs)

    def info(self, msg, *args, **kwargs):
        self.logger.info(msg, *args, **kwargs)

    def warning(self, msg, *args, **kwargs):
        self.logger.warning(msg, *args, **kwargs)

    def error(self, msg, *args, **kwargs):
        self.logger.error(msg, *args, **kwargs)

    def exception(self, msg, *args, **kwargs):
        self.logger.exception(msg, *args, **kwargs)


class ColorFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.RESET)
        message = super().format(record)
        return f"{color}{message}{self.RESET}"
