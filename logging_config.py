"""
Logging setup for the API.
Plain text output for development, one JSON object per line for log aggregation.
"""

import json
import logging
import logging.config
import traceback
from datetime import datetime

from config import Settings


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON documents"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.utcnow().isoformat() + 'Z',
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_data, default=str, ensure_ascii=False)


def build_logging_config(settings: Settings) -> dict:
    formatter = 'json' if settings.LOG_FORMAT.lower() == 'json' else 'text'
    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'text': {
                'format': '%(asctime)s %(levelname)-8s %(name)s: %(message)s',
            },
            'json': {
                '()': JSONFormatter,
            },
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': formatter,
                'stream': 'ext://sys.stdout',
            },
        },
        'root': {
            'level': settings.LOG_LEVEL.upper(),
            'handlers': ['console'],
        },
        'loggers': {
            # pymongo is chatty at DEBUG
            'pymongo': {'level': 'WARNING'},
        },
    }


def configure_logging(settings: Settings) -> None:
    logging.config.dictConfig(build_logging_config(settings))
