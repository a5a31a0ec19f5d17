import logging
import json
from logging.handlers import RotatingFileHandler
import os

from .types import Credential, RequestFailure
from .utils import format_credential_for_display

FAILURE_LOGGER_NAME = 'quota_library.failures'


def setup_failure_logger(log_dir: str = "logs") -> logging.Logger:
    """Sets up a dedicated JSON logger for failed quota requests."""
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    logger = logging.getLogger(FAILURE_LOGGER_NAME)
    logger.setLevel(logging.INFO)

    # Keep structured records out of the console output
    logger.propagate = False

    # Add the handler only once, even if setup is called repeatedly
    if any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        return logger

    handler = RotatingFileHandler(
        os.path.join(log_dir, 'failures.log'),
        maxBytes=5*1024*1024,  # 5 MB
        backupCount=2
    )

    class JsonFormatter(logging.Formatter):
        def format(self, record):
            log_record = {
                "timestamp": self.formatTime(record, self.datefmt),
                "level": record.levelname,
                "message": record.msg if isinstance(record.msg, dict) else record.getMessage()
            }
            return json.dumps(log_record)

    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    return logger


def log_failure(credential: Credential, attempt: int, failure: RequestFailure):
    """Logs a structured record for a failed quota request."""
    logger = logging.getLogger(FAILURE_LOGGER_NAME)
    if not logger.handlers:
        return

    log_data = {
        "credential_ending": format_credential_for_display(credential.token),
        "credential_source": credential.source.value,
        "attempt_number": attempt,
        "failure_kind": failure.kind.value,
        "status": failure.status,
        "message": failure.message,
    }
    logger.error(log_data)
