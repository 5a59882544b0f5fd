"""Process-wide runtime flags shared across modules."""
from __future__ import annotations

from datetime import datetime

_scheduler_active = False
_last_job_runs: dict[str, dict[str, object]] = {}


def set_scheduler_active(active: bool) -> None:
    global _scheduler_active
    _scheduler_active = active


def is_scheduler_active() -> bool:
    return _scheduler_active


def record_job_run(job_name: str, *, finished_at: datetime, summary: dict[str, object]) -> None:
    """Remember the outcome of the latest run of a scheduled job."""

    _last_job_runs[job_name] = {"finished_at": finished_at.isoformat(), "summary": dict(summary)}


def last_job_runs() -> dict[str, dict[str, object]]:
    return {name: dict(info) for name, info in _last_job_runs.items()}
