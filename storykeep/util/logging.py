"""
Structured logging for draft persistence, admin settings access and audit events.
"""

import logging
import os
from typing import Any, Dict, List


class StructuredLogger:
    """Structured logger for draft, settings, retry and autosave operations."""

    def __init__(self, name: str = "storykeep"):
        self.logger = logging.getLogger(name)
        debug = os.getenv("DEBUG", "false").lower() == "true"
        self.logger.setLevel(logging.DEBUG if debug else logging.INFO)

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

    def log_draft_operation(self, operation: str, key: str, status: str = "success", details: Dict[str, Any] = None):
        """Log a local draft operation (save, load, clear, publish)."""
        log_details = {"key": key}
        if details:
            log_details.update(sanitize_payload(details))

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation(f"draft.{operation}", status, log_details, level)

    def log_settings_fetch(self, source: str, status: str = "success", details: Dict[str, Any] = None):
        """Log where admin settings were served from (cache, remote, in_flight)."""
        log_details = {"source": source}
        if details:
            log_details.update(details)

        level = logging.DEBUG if source == "cache" else logging.INFO
        if status != "success":
            level = logging.ERROR
        self.log_operation("settings.fetch", status, log_details, level)

    def log_settings_mutation(self, action: str, target: str, actor: str, status: str = "success", details: Dict[str, Any] = None):
        """Log an admin settings mutation."""
        log_details = {"action": action, "target": target, "actor": actor}
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation(f"settings.{action}", status, log_details, level)

    def log_retry_attempt(self, operation: str, attempt: int, max_attempts: int, delay_sec: float, error: Exception):
        """Log a failed attempt that will be retried."""
        log_details = {
            "attempt": attempt,
            "max_attempts": max_attempts,
            "delay_sec": delay_sec,
            "error": str(error)[:100]
        }
        self.log_operation(f"retry.{operation}", "retrying", log_details, logging.WARNING)

    def log_autosave_task(self, task_name: str, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log autosave task execution."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)
        elif status == "failed":
            log_details["message"] = f"Autosave task '{task_name}' failed after {duration_ms}ms"

        level = logging.DEBUG if status == "success" else logging.ERROR
        self.log_operation(f"autosave.{task_name}", status, log_details, level)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        self.logger.info(message)

    def warning(self, message: str) -> None:
        self.logger.warning(message)

    def error(self, message: str) -> None:
        self.logger.error(message)

    def debug(self, message: str) -> None:
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None, sensitive_fields: List[str] = None):
    """General audit event logging with privacy controls."""
    if sensitive_fields is None:
        sensitive_fields = ['value', 'content', 'secret', 'password', 'token']

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for logging: redact sensitive keys, truncate long strings."""
    if sensitive_fields is None:
        sensitive_fields = ['value', 'content', 'secret', 'password', 'token']

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
