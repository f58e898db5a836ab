"""Logging configuration and setup."""

import logging
import logging.handlers
import json
from typing import Dict, Any, Optional
from datetime import datetime, timezone

from aws_service_broker.config import LoggingConfig


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        # Add extra fields if present
        for attr in ('instance_id', 'binding_id', 'operation', 'user_id'):
            if hasattr(record, attr):
                log_entry[attr] = getattr(record, attr)

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


class AuditLogger:
    """Specialized logger for the broker audit trail."""

    def __init__(self):
        self.logger = logging.getLogger('aws_service_broker.audit')

    def log_broker_operation(self, instance_id: str, operation: str,
                             user_id: Optional[str] = None,
                             details: Optional[Dict[str, Any]] = None):
        """Log a state-changing broker operation."""
        extra = {
            'instance_id': instance_id,
            'operation': operation,
            'user_id': user_id or 'system'
        }

        message = f"Broker operation: {operation} for instance {instance_id}"
        if details:
            message += f" - Details: {json.dumps(details, default=str)}"

        self.logger.info(message, extra=extra)


def setup_logging(logging_config: Optional[LoggingConfig] = None):
    """Set up logging configuration."""
    logging_config = logging_config or LoggingConfig()

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, logging_config.level.upper(), logging.INFO))

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(JSONFormatter())
    root_logger.addHandler(console_handler)

    # File handler if configured
    if logging_config.file_path:
        file_handler = logging.handlers.RotatingFileHandler(
            logging_config.file_path,
            maxBytes=logging_config.max_file_size,
            backupCount=logging_config.backup_count
        )
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # Set specific logger levels
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('botocore').setLevel(logging.WARNING)
    logging.getLogger('boto3').setLevel(logging.WARNING)
    logging.getLogger('werkzeug').setLevel(logging.WARNING)


# Initialize audit logger
audit_logger = AuditLogger()
