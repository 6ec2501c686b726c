"""Invocation audit log.

Appends one JSON line per sandboxed invocation with the skill, outcome, fuel
and timing. Input payloads and outputs are never written; only their sizes.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from skillbox.sandbox.invocation import Invocation

logger = logging.getLogger(__name__)


class InvocationAuditLogger:
    """Logger for capturing one record per skill invocation."""

    def __init__(self, audit_file: Path, include_logs: bool = False):
        """Initialize audit logger.

        Args:
            audit_file: Path to audit log file (JSON lines)
            include_logs: Whether to include guest log lines in each record
        """
        self.audit_file = Path(audit_file)
        self.include_logs = include_logs
        self._lock = threading.Lock()
        self._ensure_audit_file()

    def _ensure_audit_file(self) -> None:
        """Ensure audit log file and directory exist."""
        self.audit_file.parent.mkdir(parents=True, exist_ok=True)
        if not self.audit_file.exists():
            self.audit_file.touch()
            logger.debug(f"Created audit log file: {self.audit_file}")

    def record(self, invocation: "Invocation") -> None:
        """Append the summary of a disposed invocation.

        Args:
            invocation: Finished invocation
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **invocation.summary(),
            "input_bytes": len(invocation.input),
        }

        if invocation.logs:
            if self.include_logs:
                entry["logs"] = invocation.logs
            else:
                entry["log_lines"] = len(invocation.logs)

        # Write to audit log file (append mode)
        try:
            with self._lock, open(self.audit_file, "a") as f:
                json.dump(entry, f)
                f.write("\n")
        except OSError as e:
            logger.error(f"Failed to write audit log: {e}")

    def read_entries(self) -> list[dict[str, Any]]:
        """Read back all audit entries (for inspection and tests)."""
        if not self.audit_file.exists():
            return []
        with open(self.audit_file) as f:
            return [json.loads(line) for line in f if line.strip()]
