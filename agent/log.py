"""File logger construction shared by agent components."""

import logging
import os


def build_file_logger(name: str, log_dir: str, filename: str) -> logging.Logger:
    """Return a logger writing to `log_dir/filename`, reusing an existing handler."""
    os.makedirs(log_dir, exist_ok=True)
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    log_path = os.path.abspath(os.path.join(log_dir, filename))
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == log_path:
            return logger

    handler = logging.FileHandler(log_path, encoding="utf-8")
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False
    return logger
