"""Structured audit trail for triage runs."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class StructuredLogger:
    """Appends one JSON object per event to an audit file."""

    def __init__(self, log_file: str | None = None):
        """Initialize structured logger.

        Args:
            log_file: Path to JSON lines file; events are dropped when None
        """
        self.log_file = Path(log_file) if log_file else None

    def log_event(self, event_type: str, data: dict[str, Any]) -> None:
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            **data,
        }

        if self.log_file:
            try:
                with open(self.log_file, "a", encoding="utf-8") as f:
                    f.write(json.dumps(event) + "\n")
            except OSError as e:
                logger.error(f"Failed to write to audit log: {e}")

    def log_run_started(self, query: str, batch_size: int, dry_run: bool) -> None:
        self.log_event("run_started", {"query": query, "batch_size": batch_size, "dry_run": dry_run})

    def log_thread_processed(
        self,
        thread_id: str,
        subject: str,
        requires_response: bool,
        labels: list[str],
        dry_run: bool = False,
    ) -> None:
        """Log a successfully triaged thread.

        Args:
            thread_id: Mailbox thread id
            subject: Subject of the first message (sanitized before writing)
            requires_response: Classifier verdict
            labels: Labels attached (or that would be attached in dry-run)
            dry_run: Whether labels were actually written
        """
        self.log_event(
            "thread_processed",
            {
                "thread_id": thread_id,
                "subject": self._sanitize_for_json(subject),
                "requires_response": requires_response,
                "labels": labels,
                "dry_run": dry_run,
            },
        )

    def log_thread_failed(self, thread_id: str, error_type: str, message: str) -> None:
        self.log_event(
            "thread_failed",
            {
                "thread_id": thread_id,
                "error_type": error_type,
                "message": self._sanitize_for_json(message),
            },
        )

    def log_run_completed(self, selected: int, labeled: int, failed: int) -> None:
        self.log_event("run_completed", {"selected": selected, "labeled": labeled, "failed": failed})

    def log_error(self, error_type: str, message: str, details: dict[str, Any] | None = None) -> None:
        self.log_event(
            "error",
            {
                "error_type": error_type,
                "message": self._sanitize_for_json(message),
                "details": details or {},
            },
        )

    def _sanitize_for_json(self, value: str) -> str:
        """Drop control characters and cap length."""
        sanitized = "".join(c for c in value if c.isprintable() or c in [" ", "\t"])
        if len(sanitized) > 500:
            sanitized = sanitized[:497] + "..."
        return sanitized
