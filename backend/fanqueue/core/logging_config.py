import logging
import logging.handlers
import os
import re
from pathlib import Path

from fanqueue.core.config import settings

class SensitiveDataFilter(logging.Filter):
    """
    Filter to mask payment secrets and credentials in log records.
    """
    def __init__(self, name=""):
        super().__init__(name)
        self.patterns = [
            (r'(client_secret=)[\'"]?([^\'"\s,}]+)[\'"]?', r'\1***MASKED***'),
            (r'(secret_key=)[\'"]?([^\'"\s,}]+)[\'"]?', r'\1***MASKED***'),
            (r'(token=)[\'"]?([^\'"\s,}]+)[\'"]?', r'\1***MASKED***'),
            (r'(signature=)[\'"]?([^\'"\s,}]+)[\'"]?', r'\1***MASKED***'),
            (r'(Bearer\s+)[A-Za-z0-9\-_\.]+', r'\1***MASKED***'),
            (r'\b(sk|rk|whsec)_(live|test)?_?[A-Za-z0-9]+', r'\1_***MASKED***'),
        ]

    def filter(self, record):
        if not isinstance(record.msg, str):
            return True

        msg = record.msg
        for pattern, replacement in self.patterns:
            msg = re.sub(pattern, replacement, msg, flags=re.IGNORECASE)

        record.msg = msg
        return True

def setup_logging(log_dir: str | None = None):
    """
    Configures the logging for the application.
    Writes logs to stdout and to a rotating file.
    """
    log_dir = Path(log_dir or os.environ.get("LOG_DIR", "/tmp/logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "fanqueue.log"

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    sensitive_filter = SensitiveDataFilter()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.addFilter(sensitive_filter)

    # Rotates at 10MB, keeps 5 backups
    file_handler = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=10 * 1024 * 1024, backupCount=5
    )
    file_handler.setFormatter(formatter)
    file_handler.addFilter(sensitive_filter)

    root_logger = logging.getLogger()
    log_level = settings.LOG_LEVEL.upper()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates if called multiple times
    root_logger.handlers = []

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return log_file
