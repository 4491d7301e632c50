import logging
import os
import sys
from pathlib import Path

LOGS_DIR = Path(os.getenv("LOGS_DIR", "logs"))


def setup_logging(
    log_file: str = "engine.log", level: int = logging.INFO
) -> logging.Logger:
    # one logger per log file, e.g. "engine.log" -> "personalization.engine"
    logger = logging.getLogger(f"personalization.{Path(log_file).stem}")
    logger.setLevel(level)
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    LOGS_DIR.mkdir(exist_ok=True)
    file_handler = logging.FileHandler(LOGS_DIR / log_file)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger
