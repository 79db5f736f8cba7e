#!/usr/bin/env python3
"""Audit Logger - Append-only record of vault lifecycle and mutation events.

Lines carry credential ids only. Services, principals and secrets are
never written here.
"""

import os
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

ROTATED_PREFIX = "audit.log."

# Results
ALLOWED = "ALLOWED"
DENIED = "DENIED"
ERROR = "ERROR"


class AuditLogger:
    """Append-only audit logger with daily rotation and retention."""

    def __init__(self, log_path: Path, retention_days: int = 30, actor: str = "passvault"):
        """Initialize audit logger.

        Args:
            log_path: Path to the log file (e.g., ~/.passvault/audit.log)
            retention_days: Number of days to keep rotated logs
            actor: Name recorded next to the PID on every line

        """
        self.log_path = Path(log_path)
        self.retention_days = retention_days
        self.actor = actor
        self.lock = threading.Lock()
        self._last_rotation_check: Optional[datetime] = None

        if not self.log_path.parent.exists():
            self.log_path.parent.mkdir(mode=0o700, parents=True)

        if not self.log_path.exists():
            fd = os.open(
                str(self.log_path),
                os.O_CREAT | os.O_APPEND | os.O_WRONLY,
                0o600
            )
            os.close(fd)

    def log_event(
        self,
        result: str,
        action: str,
        target: str = "vault",
        reason: Optional[str] = None
    ) -> None:
        """Append one event.

        Format: ISO8601Z [PID/actor] RESULT ACTION target [reason]

        Args:
            result: ALLOWED | DENIED | ERROR
            action: CREATE | UNLOCK | LOCK | SAVE | ADD | UPDATE | REMOVE | RESET
            target: Credential id or "vault"
            reason: Optional error code for DENIED/ERROR

        """
        self._check_rotation()

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        parts = [timestamp, f"[{os.getpid()}/{self.actor}]", result, action, target]
        if reason:
            parts.append(reason)

        with self.lock, open(self.log_path, "a") as f:
            f.write(" ".join(parts) + "\n")

    def _check_rotation(self) -> None:
        """Rotate at most once per UTC day, checked at most hourly."""
        now = datetime.now(timezone.utc)

        if self._last_rotation_check:
            if (now - self._last_rotation_check).total_seconds() < 3600:
                return
        self._last_rotation_check = now

        if not self.log_path.exists():
            return

        try:
            mtime = datetime.fromtimestamp(self.log_path.stat().st_mtime, tz=timezone.utc)
        except OSError:
            return

        today_midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        if mtime < today_midnight:
            self._rotate(mtime)
            self._cleanup_old_logs()

    def _rotate(self, mtime: datetime) -> None:
        """Move the current log aside, named after the day it was last written."""
        rotated_path = self.log_path.parent / f"{ROTATED_PREFIX}{mtime.strftime('%Y%m%d')}"
        if rotated_path.exists():
            return
        try:
            self.log_path.rename(rotated_path)
        except OSError:
            pass

    def _cleanup_old_logs(self) -> None:
        """Remove rotated logs older than the retention period."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.retention_days)

        for log_file in self.log_path.parent.glob(f"{ROTATED_PREFIX}*"):
            try:
                log_date = datetime.strptime(
                    log_file.name[len(ROTATED_PREFIX):], "%Y%m%d"
                ).replace(tzinfo=timezone.utc)
                if log_date < cutoff:
                    log_file.unlink()
            except (ValueError, OSError):
                # Foreign file name or already gone
                continue

    def read_recent(self, lines: int = 100) -> List[str]:
        """Read recent log entries, most recent last."""
        if not self.log_path.exists():
            return []

        try:
            with open(self.log_path) as f:
                return f.readlines()[-lines:]
        except OSError:
            return []
