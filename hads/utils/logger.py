"""
Logging utilities

Every module logs through ``setup_logger(__name__)``. A run log attached
with ``attach_log_file`` receives the records of all hads modules, so a
single file holds the whole deployment.
"""
import logging
import os
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
import colorlog

PACKAGE_LOGGER = 'hads'

CONSOLE_FORMAT = '%(log_color)s%(asctime)s - %(levelname)s - %(message)s%(reset)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
LOG_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

MASK = '***MASKED***'
SENSITIVE = re.compile(r'password|passwd|secret|token|credential|private_key', re.IGNORECASE)


def _level_from_env():
    name = os.getenv('HADS_LOG_LEVEL', 'INFO').upper()
    return getattr(logging, name, logging.INFO)


def _console_handler(level):
    handler = colorlog.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(colorlog.ColoredFormatter(
        CONSOLE_FORMAT, datefmt=DATE_FORMAT, log_colors=LOG_COLORS))
    return handler


def _file_handler(log_file, level):
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS,
                                  encoding='utf-8')
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logger(name, log_file=None, level=None):
    """
    Setup logger with a colored console handler and an optional file

    Calling it again for the same name replaces the handlers.

    Args:
        name: Logger name
        log_file: Log file path (optional)
        level: Log level (defaults to HADS_LOG_LEVEL or INFO)

    Returns:
        Logger instance
    """
    if level is None:
        level = _level_from_env()

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers = [_console_handler(level)]

    if log_file:
        logger.addHandler(_file_handler(log_file, level))

    return logger


def attach_log_file(log_file, level=logging.DEBUG):
    """
    Also write the records of every hads module to a rotating log file

    Args:
        log_file: Log file path, parent directories are created
        level: Minimum level written to the file

    Returns:
        The file handler, for detach_log_file
    """
    handler = _file_handler(log_file, level)
    logging.getLogger(PACKAGE_LOGGER).addHandler(handler)
    return handler


def detach_log_file(handler):
    logging.getLogger(PACKAGE_LOGGER).removeHandler(handler)
    handler.close()


def mask_sensitive_data(data):
    """
    Copy of a config structure with secret values replaced

    Args:
        data: dict, list or scalar

    Returns:
        Masked copy
    """
    if isinstance(data, dict):
        return {
            key: MASK if SENSITIVE.search(str(key)) else mask_sensitive_data(value)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [mask_sensitive_data(item) for item in data]
    return data


def mask_command(command):
    """Hide a remote command from logs when it carries a credential"""
    if command and SENSITIVE.search(command):
        return '***'
    return command
