import logging
import os

LOG_LEVEL_ENV = "SWEEPBENCH_LOG_LEVEL"


def get_logger(name: str) -> logging.Logger:
    logging.basicConfig(
        level=os.environ.get(LOG_LEVEL_ENV, "INFO").upper(),
        format="{asctime} {levelname} {name} {message}",
        style="{",
    )
    return logging.getLogger(name)
