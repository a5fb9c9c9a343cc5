"""
Progress tracking for sync passes, shared between the scheduler and the API.

Counts are kept per job in memory; only the outcome of the last finished run
(duration, last successful finish) survives a restart.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

STATE_FILE = Path(__file__).resolve().parents[1] / "config" / "control_state.json"
DEFAULT_JOBS = ("stock_basic", "daily_sync")


@dataclass
class JobProgress:
    status: str = "idle"  # idle, running, success, failed
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    completed: int = 0
    total: Optional[int] = None
    error_count: int = 0
    total_rows: Optional[int] = None
    message: Optional[str] = None
    error: Optional[str] = None
    last_duration: Optional[float] = None
    last_success_at: Optional[datetime] = None

    @property
    def progress(self) -> float:
        if self.status == "success":
            return 1.0
        if not self.total:
            return 0.0
        return max(0.0, min(1.0, self.completed / self.total))

    def reset_run(self, message: Optional[str]) -> None:
        self.status = "running"
        self.started_at = datetime.now(timezone.utc)
        self.finished_at = None
        self.completed = 0
        self.total = None
        self.error_count = 0
        self.total_rows = None
        self.message = message
        self.error = None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class SyncMonitor:
    """Thread-safe registry of job progress; the API reads it while a pass writes it."""

    def __init__(self, state_file: Optional[Path] = None, jobs: Iterable[str] = DEFAULT_JOBS) -> None:
        self._lock = threading.Lock()
        self._state_file = state_file or STATE_FILE
        self._jobs: Dict[str, JobProgress] = {name: JobProgress() for name in jobs}
        self._load()
        if not self._state_file.exists():
            with self._lock:
                self._save_locked()

    def _job(self, job: str) -> JobProgress:
        return self._jobs.setdefault(job, JobProgress())

    def _load(self) -> None:
        try:
            data = json.loads(self._state_file.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable control state %s: %s", self._state_file, exc)
            return
        if not isinstance(data, dict):
            return

        for name, payload in data.items():
            state = self._jobs.get(name)
            if state is None or not isinstance(payload, dict):
                continue
            duration = payload.get("last_duration")
            if isinstance(duration, (int, float)) and not isinstance(duration, bool):
                state.last_duration = float(duration)
            state.last_success_at = _parse_timestamp(payload.get("last_success_at"))

    def _save_locked(self) -> None:
        persisted = {
            name: {
                "last_duration": state.last_duration,
                "last_success_at": _isoformat(state.last_success_at),
            }
            for name, state in self._jobs.items()
        }
        try:
            self._state_file.parent.mkdir(parents=True, exist_ok=True)
            tmp_file = self._state_file.with_suffix(".tmp")
            tmp_file.write_text(json.dumps(persisted, indent=2, sort_keys=True), encoding="utf-8")
            tmp_file.replace(self._state_file)
        except OSError as exc:
            logger.warning("Failed to persist control state: %s", exc)

    def is_running(self, job: str) -> bool:
        with self._lock:
            return self._job(job).status == "running"

    def start(self, job: str, *, message: Optional[str] = None) -> None:
        with self._lock:
            self._job(job).reset_run(message)

    def update(
        self,
        job: str,
        *,
        completed: Optional[int] = None,
        total: Optional[int] = None,
        error_count: Optional[int] = None,
        total_rows: Optional[int] = None,
        message: Optional[str] = None,
    ) -> None:
        """Record how far a running pass has got; omitted values are left as they are."""
        with self._lock:
            state = self._job(job)
            if total is not None:
                state.total = max(total, 0)
            if completed is not None:
                state.completed = max(completed, 0)
            if error_count is not None:
                state.error_count = max(error_count, 0)
            if total_rows is not None:
                state.total_rows = total_rows
            if message is not None:
                state.message = message

    def finish(
        self,
        job: str,
        *,
        success: bool,
        error_count: Optional[int] = None,
        total_rows: Optional[int] = None,
        message: Optional[str] = None,
        error: Optional[str] = None,
        last_duration: Optional[float] = None,
    ) -> None:
        with self._lock:
            state = self._job(job)
            finished_at = datetime.now(timezone.utc)
            state.status = "success" if success else "failed"
            state.finished_at = finished_at
            state.started_at = state.started_at or finished_at
            if error_count is not None:
                state.error_count = error_count
            if total_rows is not None:
                state.total_rows = total_rows
            if message is not None:
                state.message = message
            state.error = error
            state.last_duration = (
                last_duration
                if last_duration is not None
                else (finished_at - state.started_at).total_seconds()
            )
            if success:
                state.last_success_at = finished_at
            self._save_locked()

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {
                name: {
                    "status": state.status,
                    "startedAt": _isoformat(state.started_at),
                    "finishedAt": _isoformat(state.finished_at),
                    "progress": state.progress,
                    "completed": state.completed,
                    "total": state.total,
                    "errorCount": state.error_count,
                    "totalRows": state.total_rows,
                    "message": state.message,
                    "error": state.error,
                    "lastDuration": state.last_duration,
                    "lastSuccessAt": _isoformat(state.last_success_at),
                }
                for name, state in self._jobs.items()
            }


monitor = SyncMonitor()

__all__ = ["JobProgress", "SyncMonitor", "monitor"]
