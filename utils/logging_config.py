"""Logging configuration for the receipt ingestion service."""

import os
import logging.config
import json
from datetime import datetime
from typing import Dict, Any, List

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Stage timings and run outcomes go to their own JSON file
PIPELINE_LOGGER = 'services.receipt_service'

# Chatty third-party loggers kept at WARNING even in debug mode
QUIET_LOGGERS = ('PIL', 'urllib3', 'google', 'google.auth', 'werkzeug')


def _rotating_handler(filename: str, level: str, formatter: str) -> Dict[str, Any]:
    return {
        'class': 'logging.handlers.RotatingFileHandler',
        'level': level,
        'formatter': formatter,
        'filename': filename,
        'maxBytes': LOG_FILE_MAX_BYTES,
        'backupCount': LOG_FILE_BACKUPS,
        'encoding': 'utf-8'
    }


def setup_logging(
    log_dir: str = 'logs',
    debug_mode: bool = False,
    log_to_file: bool = True,
    json_console: bool = False
) -> None:
    """
    Set up logging for the app and the CLI.

    The console always gets a handler. With ``log_to_file`` errors, general
    info and per-receipt pipeline records are written to dated rotating
    files under ``log_dir``, plus a debug file in debug mode.

    Args:
        log_dir: Directory to store log files
        debug_mode: Whether to enable debug logging
        log_to_file: Whether to log to files
        json_console: Whether console output uses the JSON formatter
    """
    level = 'DEBUG' if debug_mode else 'INFO'
    day = datetime.now().strftime('%Y%m%d')

    handlers: Dict[str, Dict[str, Any]] = {
        'console': {
            'class': 'logging.StreamHandler',
            'level': level,
            'formatter': 'json' if json_console else 'standard',
            'stream': 'ext://sys.stdout'
        }
    }
    root_handlers: List[str] = ['console']
    pipeline_handlers: List[str] = []

    if log_to_file:
        os.makedirs(log_dir, exist_ok=True)
        handlers['error_file'] = _rotating_handler(
            os.path.join(log_dir, f'error_{day}.log'), 'ERROR', 'detailed')
        handlers['info_file'] = _rotating_handler(
            os.path.join(log_dir, f'info_{day}.log'), 'INFO', 'standard')
        handlers['pipeline_file'] = _rotating_handler(
            os.path.join(log_dir, f'pipeline_{day}.log'), 'INFO', 'json')
        root_handlers += ['error_file', 'info_file']
        pipeline_handlers.append('pipeline_file')
        if debug_mode:
            handlers['debug_file'] = _rotating_handler(
                os.path.join(log_dir, f'debug_{day}.log'), 'DEBUG', 'detailed')
            root_handlers.append('debug_file')

    loggers: Dict[str, Dict[str, Any]] = {
        '': {'handlers': root_handlers, 'level': level},
        PIPELINE_LOGGER: {'handlers': pipeline_handlers, 'level': level, 'propagate': True},
    }
    for name in QUIET_LOGGERS:
        loggers[name] = {'level': 'WARNING', 'propagate': True}

    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'standard': {
                'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
            },
            'detailed': {
                'format': '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d [%(threadName)s]: %(message)s'
            },
            'json': {
                '()': 'utils.logging_config.JsonFormatter'
            }
        },
        'handlers': handlers,
        'loggers': loggers
    })

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized (level={level}, files={'on' if log_to_file else 'off'})")


class JsonFormatter(logging.Formatter):
    """One JSON object per record; context from log_with_context lands under 'data'."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'logger': record.name,
            'thread': record.threadName,
            'message': record.getMessage()
        }
        context = getattr(record, 'data', None)
        if context:
            entry['data'] = context
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    context: Dict[str, Any] = None,
    **kwargs
) -> None:
    """
    Log a message with structured context (stage name, timings, counts).

    Args:
        logger: Logger instance
        level: Logging level
        msg: Log message
        context: Fields attached to the record as ``record.data``
        **kwargs: Passed to ``logger.log``
    """
    if context:
        kwargs.setdefault('extra', {})['data'] = context
    logger.log(level, msg, **kwargs)
