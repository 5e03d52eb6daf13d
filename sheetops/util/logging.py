"""
Structured logging for sheet reads, writes, append resolution and token state.
"""

import logging
from typing import Any, Dict, List

SENSITIVE_FIELDS = ['token', 'access_token', 'accessToken', 'key', 'api_key', 'authorization', 'secret']


class StructuredLogger:
    """Structured logger for sheet operations."""

    def __init__(self, name: str = "sheetops"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {sanitize_payload(details)}"

        if status in ("failed", "error", "rejected"):
            self.logger.error(message)
        else:
            self.logger.info(message)

    def log_sheet_read(self, spreadsheet_id: str, range_spec: str, row_count: int, status: str = "success"):
        """Log a values or metadata read."""
        self.log_operation("sheets.read", status, {
            "spreadsheet_id": spreadsheet_id,
            "range": range_spec,
            "rows": row_count
        })

    def log_batch_write(self, spreadsheet_id: str, tab_name: str, range_count: int, status: str = "success", details: Dict[str, Any] = None):
        """Log a values:batchUpdate submission."""
        log_details = {
            "spreadsheet_id": spreadsheet_id,
            "tab": tab_name,
            "ranges": range_count
        }
        if details:
            log_details.update(details)

        self.log_operation("sheets.batch_update", status, log_details)

    def log_append_resolution(self, tab_name: str, watch_range: str, last_occupied: int, target_row: int):
        """Log how an append target row was chosen."""
        self.log_operation("append.resolve", "resolved", {
            "tab": tab_name,
            "watch": watch_range,
            "last_occupied_row": last_occupied,
            "target_row": target_row
        })

    def log_auth_transition(self, from_state: str, to_state: str, details: Dict[str, Any] = None):
        """Log a token state change."""
        log_details = {"from": from_state, "to": to_state}
        if details:
            log_details.update(details)

        self.log_operation("auth.transition", to_state, log_details)

    def log_classification(self, view: str, tab_name: str, total: int, matched: int):
        """Log a view reconciliation result."""
        self.log_operation(f"classify.{view}", "success", {
            "tab": tab_name,
            "records": total,
            "matched": matched
        })

    def log_retry(self, description: str, status: Any, delay: float, attempt: int, max_attempts: int):
        """Log a transport retry."""
        self.logger.warning(
            "Sheets API %s error (%s). Retrying in %.1fs (%d/%d)",
            description, status, delay, attempt, max_attempts
        )

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

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads before they reach the log."""
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


# Global logger instance
logger = StructuredLogger()
