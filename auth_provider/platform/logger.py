import logging
import os
from logging.handlers import RotatingFileHandler

ROOT_LOGGER_NAME = "auth_provider"
LOG_FILE_NAME = "auth_provider.log"

formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def configure_logging(log_dir: str, debug: bool = False) -> logging.Logger:
    """
    Attach console and rotating file handlers to the package root logger.

    Module loggers from `get_logger` are its children and propagate to it, so
    calling this again (a new app, a new LOG_DIR) moves every logger at once.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    level = logging.DEBUG if debug else logging.INFO
    root.setLevel(level)
    root.propagate = False

    log_dir = log_dir if os.path.isabs(log_dir) else os.path.join(os.getcwd(), log_dir)
    os.makedirs(log_dir, exist_ok=True)

    file_handler = RotatingFileHandler(
        os.path.join(log_dir, LOG_FILE_NAME), maxBytes=10_000_000, backupCount=5
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root.addHandler(file_handler)
    root.addHandler(console_handler)

    return root


def get_logger(name: str) -> logging.Logger:
    """Logger for one module. Output goes wherever `configure_logging` last pointed."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
