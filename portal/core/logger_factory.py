import logging
import os
import sys

import colorlog

from portal.core.config import LOG_LEVEL, LOG_PATH


def get_formatter():
    return colorlog.ColoredFormatter(
        '%(log_color)s%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        reset=True,
        log_colors={
            'DEBUG': 'white',
            'INFO': 'cyan',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'bold_red,bg_white',
        },
    )


def setup_logger(name: str, log_file: str = "portal.log", level: str | int = LOG_LEVEL) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.hasHandlers():
        return logger  # avoid duplicate handlers on reload

    formatter = get_formatter()

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if LOG_PATH:
        os.makedirs(LOG_PATH, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(LOG_PATH, log_file), mode='a')
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
