"""
Structured JSON logging for agent and collector processes.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional, Union

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class JSONFormatter(logging.Formatter):
    """
    Formats records as one JSON object per line.

    Output format:
    {
        "timestamp": "2026-10-19T08:30:00.123456Z",
        "level": "INFO",
        "logger": "sentra_hub.heartbeat",
        "service": "sentra-collector",
        "message": "Heartbeat accepted",
        "context": {...}  # from extra={'context': {...}}
    }
    """

    def __init__(self, service: Optional[str] = None):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        if self.service:
            log_data['service'] = self.service

        context = getattr(record, 'context', None)
        if context:
            log_data['context'] = context

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': self.formatException(record.exc_info)
            }

        if record.levelno <= logging.DEBUG:
            log_data['source'] = {
                'file': record.pathname,
                'line': record.lineno,
                'function': record.funcName
            }

        return json.dumps(log_data, default=str)


def _make_formatter(use_json: bool, service: Optional[str]) -> logging.Formatter:
    if use_json:
        return JSONFormatter(service=service)
    return logging.Formatter(TEXT_FORMAT)


def _resolve_level(level: Union[int, str, None]) -> int:
    if level is None:
        level = os.getenv('SENTRA_LOG_LEVEL', 'INFO')
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        # getLevelName returns "Level X" for unknown names
        return resolved if isinstance(resolved, int) else logging.INFO
    return level


def setup_logging(
    level: Union[int, str, None] = None,
    service: Optional[str] = None,
    use_json: Optional[bool] = None,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Configure the root logger for a Sentra process.

    Args:
        level: Level name or number (default: SENTRA_LOG_LEVEL or INFO)
        service: Service name stamped on every JSON record
        use_json: JSON output (default: True unless SENTRA_LOG_FORMAT=text)
        log_file: Optional file to log to in addition to stderr

    Returns:
        The configured root logger

    Calling this again replaces the handlers installed by a previous call,
    so it is safe to invoke from both a CLI entry point and tests.
    """
    if use_json is None:
        use_json = os.getenv('SENTRA_LOG_FORMAT', 'json').lower() != 'text'

    root = logging.getLogger()
    root.setLevel(_resolve_level(level))

    for handler in [h for h in root.handlers if getattr(h, '_sentra', False)]:
        root.removeHandler(handler)
        handler.close()

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    formatter = _make_formatter(use_json, service)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler._sentra = True
        root.addHandler(handler)

    return root


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger.

    Handlers live on the root logger (see setup_logging), so module loggers
    only carry a name. Example:

        logger = get_logger(__name__)
        logger.info("Command enqueued", extra={'context': {'command_id': 7}})
    """
    return logging.getLogger(name)
