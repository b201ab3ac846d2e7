"""SQLAlchemy-backed job store.

Session work is synchronous and runs in a worker thread via asyncio.to_thread.
The one-active-job-per-subject rule is enforced by the partial unique index on
generation_jobs.subject_key, so two processes racing through enqueue cannot both
insert.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from plangen.collaborators import JobStore
from plangen.db.models import JobRecord
from plangen.db.session import get_session_factory, session_scope
from plangen.errors import DuplicateActiveJobError, JobNotFoundError
from plangen.jobs.models import Job, JobKind, JobStatus, JobSubject
from plangen.jobs.state import ACTIVE_STATUSES, apply_status


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def record_to_job(record: JobRecord) -> Job:
    subject = JobSubject(
        kind=JobKind(record.kind),
        questionnaire_id=record.questionnaire_id,
        recommendation_id=record.recommendation_id,
        week_number=record.week_number,
    )
    created_at = _aware(record.created_at)
    updated_at = _aware(record.updated_at)
    assert created_at is not None and updated_at is not None
    return Job(
        id=record.id,
        subject=subject,
        status=JobStatus(record.status),
        created_at=created_at,
        updated_at=updated_at,
        current_step=record.current_step,
        error_message=record.error_message,
        result_id=record.result_id,
        created_by=record.created_by,
        cancel_reason=record.cancel_reason,
        started_at=_aware(record.started_at),
        completed_at=_aware(record.completed_at),
    )


def _write_back(record: JobRecord, job: Job) -> None:
    record.status = str(job.status)
    record.current_step = job.current_step
    record.error_message = job.error_message
    record.result_id = job.result_id
    record.cancel_reason = job.cancel_reason
    record.updated_at = job.updated_at
    record.started_at = job.started_at
    record.completed_at = job.completed_at


class SqlJobStore(JobStore):
    """JobStore persisted in the generation_jobs table.

    Args:
        session_factory: Session factory; defaults to the one built from settings.database_url
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory

    def _factory(self) -> sessionmaker[Session]:
        return self._session_factory or get_session_factory()

    # -- sync implementations ------------------------------------------------

    def _create_sync(self, subject: JobSubject, created_by: int | None) -> Job:
        now = datetime.now(UTC)
        try:
            with session_scope(self._factory()) as session:
                active = session.execute(
                    select(JobRecord.id).where(
                        JobRecord.subject_key == subject.key,
                        JobRecord.status.in_([str(status) for status in ACTIVE_STATUSES]),
                    )
                ).first()
                if active is not None:
                    raise DuplicateActiveJobError(subject.key)

                record = JobRecord(
                    kind=str(subject.kind),
                    subject_key=subject.key,
                    questionnaire_id=subject.questionnaire_id,
                    recommendation_id=subject.recommendation_id,
                    week_number=subject.week_number,
                    status=str(JobStatus.PENDING),
                    created_by=created_by,
                    created_at=now,
                    updated_at=now,
                )
                session.add(record)
                session.flush()
                return record_to_job(record)
        except IntegrityError as e:
            logger.info("Concurrent insert for active subject rejected by index", subject=subject.key)
            raise DuplicateActiveJobError(subject.key) from e

    def _get_sync(self, job_id: int) -> Job | None:
        with session_scope(self._factory()) as session:
            record = session.get(JobRecord, job_id)
            return record_to_job(record) if record is not None else None

    def _latest_sync(self, subject: JobSubject) -> Job | None:
        with session_scope(self._factory()) as session:
            record = session.execute(
                select(JobRecord)
                .where(JobRecord.subject_key == subject.key)
                .order_by(JobRecord.created_at.desc(), JobRecord.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            return record_to_job(record) if record is not None else None

    def _pending_sync(self, limit: int | None) -> list[Job]:
        with session_scope(self._factory()) as session:
            query = (
                select(JobRecord)
                .where(JobRecord.status == str(JobStatus.PENDING))
                .order_by(JobRecord.created_at.asc(), JobRecord.id.asc())
            )
            if limit is not None:
                query = query.limit(limit)
            return [record_to_job(record) for record in session.execute(query).scalars()]

    def _transition_sync(self, job_id: int, status: JobStatus, **fields) -> Job:
        with session_scope(self._factory()) as session:
            record = session.get(JobRecord, job_id)
            if record is None:
                raise JobNotFoundError(job_id)
            job = apply_status(record_to_job(record), status, datetime.now(UTC), **fields)
            _write_back(record, job)
            return job

    # -- async interface -----------------------------------------------------

    async def create(self, subject: JobSubject, created_by: int | None = None) -> Job:
        return await asyncio.to_thread(self._create_sync, subject, created_by)

    async def get(self, job_id: int) -> Job | None:
        return await asyncio.to_thread(self._get_sync, job_id)

    async def get_latest_by_subject(self, subject: JobSubject) -> Job | None:
        return await asyncio.to_thread(self._latest_sync, subject)

    async def list_pending(self, limit: int | None = None) -> list[Job]:
        return await asyncio.to_thread(self._pending_sync, limit)

    async def update_status(self, job_id: int, status: JobStatus, current_step: str | None = None) -> Job:
        return await asyncio.to_thread(self._transition_sync, job_id, status, current_step=current_step)

    async def mark_complete(self, job_id: int, result_id: int | None) -> Job:
        return await asyncio.to_thread(self._transition_sync, job_id, JobStatus.COMPLETED, result_id=result_id)

    async def mark_failed(self, job_id: int, error_message: str) -> Job:
        return await asyncio.to_thread(
            self._transition_sync,
            job_id,
            JobStatus.FAILED,
            error_message=error_message,
        )

    async def mark_cancelled(self, job_id: int, reason: str | None = None) -> Job:
        return await asyncio.to_thread(self._transition_sync, job_id, JobStatus.CANCELLED, cancel_reason=reason)
