"""
Structured logging for the submission pipeline: intake, review, sync and
reconciliation events, with contact data redacted before it is written.
"""

import logging
import os
from typing import Any, Dict, List

# Fields that identify the submitter; never logged verbatim
SENSITIVE_FIELDS = ['submitter_email', 'email', 'client_ip', 'qq', 'wechat', 'contact']


class StructuredLogger:
    """Structured logger for pipeline operations."""

    def __init__(self, name: str = "clubmap"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_intake(self, receipt: str, status: str, details: Dict[str, Any] = None):
        """Log an intake attempt (buffered, stored, failed)."""
        log_details = {"receipt": receipt}
        if details:
            log_details.update(sanitize_payload(details))

        level = logging.ERROR if status == "failed" else logging.INFO
        self.log_operation("intake", status, log_details, level)

    def log_duplicate_check(self, name: str, passed: bool, match_count: int, degraded: bool = False, error: str = None):
        """Log the advisory duplicate check outcome."""
        log_details = {"name": name, "passed": passed, "matches": match_count}
        if degraded:
            log_details["error"] = (error or "")[:200]
            self.log_operation("duplicate_check", "degraded", log_details, logging.WARNING)
        else:
            self.log_operation("duplicate_check", "success", log_details)

    def log_transition(self, submission_id: str, target_status: str, actor: str, status: str = "success", details: Dict[str, Any] = None):
        """Log a review decision on a submission."""
        log_details = {
            "submission_id": submission_id,
            "target_status": target_status,
            "actor": actor
        }
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation("submission.transition", status, log_details, level)

    def log_sync(self, operation: str, status: str = "success", details: Dict[str, Any] = None):
        """Log a snapshot synchronizer run."""
        level = logging.INFO if status == "success" else logging.ERROR
        self.log_operation(f"snapshot.{operation}", status, details, level)

    def log_reconcile(self, summary: Dict[str, Any], status: str = "success"):
        """Log a reconciliation sweep summary."""
        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation("intake.reconcile", status, summary, level)

    def log_migration(self, summary: Dict[str, Any], source: str):
        log_details = {"source": source}
        log_details.update(summary)
        self.log_operation("snapshot.migrate", "success", log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def exception(self, message: str) -> None:
        """Log an error message with the active traceback."""
        self.logger.exception(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None):
    """Audit trail entry for admin actions (approve, reject, edit, delete)."""
    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
