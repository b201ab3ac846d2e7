"""Job progress events.

Every phase boundary of a job run is logged as a structured `job_progress`
event, next to the `current_step` written to the job record for polling.
"""

import time

from loguru import logger

from plangen.jobs.models import JobKind


def emit_job_progress(
    job_id: int,
    kind: JobKind,
    step: str,
    status: str,
    *,
    error: str | None = None,
    duration_ms: int | None = None,
    summary: dict[str, object] | None = None,
) -> None:
    """Emit a job progress event.

    Args:
        job_id: Job ID
        kind: Job kind
        step: Step label (e.g. "Generating workouts...")
        status: "in_progress", "completed" or "failed"
        error: Error message for failed steps
        duration_ms: Step duration in milliseconds
        summary: Optional step-specific data
    """
    event: dict[str, object] = {
        "job_id": job_id,
        "kind": str(kind),
        "step": step,
        "status": status,
    }
    if error:
        event["error"] = error
    if duration_ms is not None:
        event["duration_ms"] = duration_ms
    if summary:
        event["summary"] = summary

    logger.info("job_progress", **event)


def emit_step_start(job_id: int, kind: JobKind, step: str) -> float:
    """Emit a step start event and return a monotonic start time."""
    emit_job_progress(job_id, kind, step, "in_progress")
    return time.monotonic()


def emit_step_complete(
    job_id: int,
    kind: JobKind,
    step: str,
    start_time: float,
    summary: dict[str, object] | None = None,
) -> None:
    duration_ms = int((time.monotonic() - start_time) * 1000)
    emit_job_progress(job_id, kind, step, "completed", duration_ms=duration_ms, summary=summary)


def emit_step_failed(job_id: int, kind: JobKind, step: str | None, start_time: float | None, error: str) -> None:
    duration_ms = None
    if start_time is not None:
        duration_ms = int((time.monotonic() - start_time) * 1000)
    emit_job_progress(job_id, kind, step or "unknown", "failed", error=error, duration_ms=duration_ms)
