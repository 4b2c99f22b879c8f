"""
Logging configuration for certledger.

Provides structured JSON logging for audit trails and debugging.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

from .security import sanitize_for_logging

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems like ELK, Splunk, or CloudWatch.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


# Ledger event name -> log level; anything unlisted logs at INFO
_EVENT_LEVELS = {
    "RoleRevoked": logging.WARNING,
}


class AuditLogger:
    """
    Specialized logger for audit events.

    Every ledger event, denied call and rejected relay request passes
    through here so the log stream is a complete audit trail on its own.
    """

    def __init__(self, name: str = "certledger.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        """Internal logging method with extra fields."""
        if not self._logger.isEnabledFor(level):
            return
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def ledger_event(self, name: str, seq: int, fields: Dict[str, Any]) -> None:
        """Log an emitted ledger event."""
        self._log(
            _EVENT_LEVELS.get(name, logging.INFO),
            "LEDGER_EVENT",
            ledger_event=name,
            seq=seq,
            fields=fields,
            message=f"{name} #{seq}"
        )

    def operation_failed(self, operation: str, caller: Optional[str], error: Dict[str, Any]) -> None:
        """Log a rejected ledger operation."""
        self._log(
            logging.WARNING,
            "OPERATION_FAILED",
            operation=operation,
            caller=caller,
            error=error,
            message=f"{operation} rejected: {error.get('error')}"
        )

    def authorization_denied(self, identity: str, role: str, operation: str) -> None:
        """Log a role check failure."""
        self._log(
            logging.WARNING,
            "AUTHORIZATION_DENIED",
            identity=identity,
            role=role,
            operation=operation,
            message=f"{identity} denied {operation} (requires {role})"
        )

    def relay_request(self, identity: str, nonce: int, function: str) -> None:
        """Log a delegated call about to be dispatched."""
        self._log(
            logging.INFO,
            "RELAY_REQUEST",
            identity=identity,
            nonce=nonce,
            function=function,
            message=f"Delegated {function} for {identity} at nonce {nonce}"
        )

    def relay_rejected(self, identity: str, reason: str, request: Optional[Dict[str, Any]] = None) -> None:
        """Log a delegated call rejected before dispatch."""
        self._log(
            logging.WARNING,
            "RELAY_REJECTED",
            identity=identity,
            reason=reason,
            request=sanitize_for_logging(request or {}),
            message=f"Relay rejected for {identity}: {reason}"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
        """Log a security-relevant event."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
        )

    def rate_limit_exceeded(self, client_id: str, endpoint: str) -> None:
        """Log rate limit exceeded."""
        self._log(
            logging.WARNING,
            "RATE_LIMIT_EXCEEDED",
            client_id=client_id,
            endpoint=endpoint,
            message=f"Rate limit exceeded for {client_id} on {endpoint}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Args:
        request_id: Request ID to set, or None to generate one

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


# Global audit logger instance
audit_log = AuditLogger()
