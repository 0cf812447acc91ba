"""
Brain Structured Logging Configuration

Provides:
- JSON structured logging for production
- Colorized console output for development
- Structured extra fields (entity_id, project, duration_ms, ...)

Usage:
    from brain.core.logging_config import setup_logging, get_logger

    # At process startup
    setup_logging(level='INFO', json_format=True)

    # In modules
    logger = get_logger(__name__)
    logger.info('Embedded note', extra={'entity_id': 'features/auth', 'chunks': 3})
"""

import logging
import json
import os
import sys
import traceback
from datetime import datetime, timezone


# Attributes every LogRecord carries; anything else came in through extra=
_RESERVED_ATTRS = frozenset((
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'taskName', 'message',
))


# =============================================================================
# Custom Formatters
# =============================================================================

class JSONFormatter(logging.Formatter):
    """JSON structured log formatter for production."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            log_entry[key] = value

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': traceback.format_exception(*record.exc_info)
            }

        return json.dumps(log_entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Colorized console formatter for development."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        reset = self.RESET

        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')

        parts = [
            f'{color}[{timestamp}]{reset}',
            f'{color}{record.levelname:8}{reset}',
            f'{record.name}:',
            record.getMessage()
        ]

        if hasattr(record, 'entity_id'):
            parts.insert(2, f'[{record.entity_id}]')

        if hasattr(record, 'duration_ms'):
            parts.append(f'({record.duration_ms}ms)')

        message = ' '.join(parts)

        if record.exc_info:
            message += '\n' + ''.join(traceback.format_exception(*record.exc_info))

        return message


# =============================================================================
# Logger Setup
# =============================================================================

def setup_logging(level='INFO', json_format=None, stream=None):
    """
    Configure logging for the brain logger tree.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (default: True when BRAIN_ENV=production)
        stream: Output stream (default: stderr, stdout is reserved for MCP)

    Returns:
        The configured 'brain' logger
    """
    if json_format is None:
        json_format = os.getenv('BRAIN_ENV', 'development') == 'production'

    brain_logger = logging.getLogger('brain')
    brain_logger.setLevel(getattr(logging, level.upper()))
    brain_logger.propagate = False

    for handler in brain_logger.handlers[:]:
        brain_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ColoredFormatter())

    brain_logger.addHandler(console_handler)

    brain_logger.debug('Logging configured', extra={
        'format': 'json' if json_format else 'colored',
        'level': level
    })

    return brain_logger


def get_logger(name):
    """Get a logger with the given name."""
    return logging.getLogger(name)
