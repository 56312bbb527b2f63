import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Context variables for correlation
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)
week_label_var: ContextVar[Optional[str]] = ContextVar('week_label', default=None)
stage_var: ContextVar[Optional[str]] = ContextVar('stage', default=None)

_CONTEXT_FIELDS = {
    'user_id': (user_id_var, 'userId'),
    'week_label': (week_label_var, 'week'),
    'stage': (stage_var, 'stage'),
}


class SecretMasker:
    """Masks credentials in log messages."""

    def __init__(self):
        self.patterns = [
            # Access/refresh tokens
            r'(?i)(access_token|refresh_token|token)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{10,})["\']?',
            # Client secrets
            r'(?i)(client_secret|secret|password)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{10,})["\']?',
            # OAuth authorization codes
            r'(?i)(code|authorization_code)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
        ]
        self.compiled_patterns = [re.compile(pattern) for pattern in self.patterns]

    @staticmethod
    def _mask(secret: str) -> str:
        # Keep first and last 4 characters
        if len(secret) > 8:
            return secret[:4] + '*' * (len(secret) - 8) + secret[-4:]
        return '*' * len(secret)

    def mask_secrets(self, text: str) -> str:
        if not text:
            return text
        for pattern in self.compiled_patterns:
            text = pattern.sub(lambda m: f"{m.group(1)}: {self._mask(m.group(2))}", text)
        return text

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask values in a dict, recursing into nested dicts and lists.

        Values stored under secret-looking keys are masked whole.
        """
        if not data:
            return data

        masked: Dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(value, str) and re.search(r'(?i)token|secret|password|code', str(key)):
                masked[key] = self._mask(value)
            elif isinstance(value, str):
                masked[key] = self.mask_secrets(value)
            elif isinstance(value, dict):
                masked[key] = self.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [self.mask_dict(item) if isinstance(item, dict)
                               else self.mask_secrets(item) if isinstance(item, str)
                               else item for item in value]
            else:
                masked[key] = value
        return masked


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self):
        super().__init__()
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': self.masker.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for var, key in _CONTEXT_FIELDS.values():
            value = var.get()
            if value:
                log_entry[key] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        fields = getattr(record, 'fields', None)
        if fields:
            log_entry['fields'] = self.masker.mask_dict(fields)

        return json.dumps(log_entry, ensure_ascii=False)


class CorrelationContext:
    """Sets correlation fields for every log line emitted inside the block.

    Usage:
        with CorrelationContext(user_id=identity.id, stage='submit'):
            ...
    """

    def __init__(self, user_id: Optional[str] = None,
                 week_label: Optional[str] = None,
                 stage: Optional[str] = None):
        self._values = {
            'user_id': user_id,
            'week_label': week_label,
            'stage': stage,
        }
        self._tokens = []

    def __enter__(self):
        for name, value in self._values.items():
            if value is not None:
                var = _CONTEXT_FIELDS[name][0]
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


def setup_logging(level: str = 'INFO',
                  log_file: Optional[str] = None,
                  structured: bool = True) -> logging.Logger:
    """Configure the ``weeklytunes`` logger tree.

    Structured output emits one JSON object per line; otherwise the plain
    ``asctime - name - level - message`` layout is used.
    """
    logger = logging.getLogger('weeklytunes')
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()

    if structured:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = 'weeklytunes') -> logging.Logger:
    return logging.getLogger(name)


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None, exc_info: bool = False,
                    **kwargs) -> None:
    """Log ``message`` with extra structured fields attached to the record."""
    merged = dict(fields or {})
    merged.update(kwargs)
    logger.log(getattr(logging, level.upper()), message,
               extra={'fields': merged} if merged else None,
               exc_info=exc_info, stacklevel=2)


def log_error(logger: logging.Logger, message: str, error: Exception, **kwargs) -> None:
    """Log an error with its type and message as fields."""
    log_with_fields(logger, 'ERROR', message, {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **kwargs
    })
