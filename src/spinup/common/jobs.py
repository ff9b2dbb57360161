"""
Job ledger utilities and the enqueue API.

Enqueueing creates a PENDING Job row and publishes a request onto the
servers queue. It never waits for the job; callers poll the Job and Server
rows to learn the outcome.
"""

import logging
from typing import Any

from sqlalchemy.orm import Session

from spinup.common.celery_app import PROCESS_SERVER_JOB, app as celery_app
from spinup.common.db.models import Job, JobPayload, JobStatus, JobType

logger = logging.getLogger(__name__)


def create_job(session: Session, server_id: str, job_type: str | JobType) -> Job:
    """
    Create a new pending job record.

    Args:
        session: Database session
        server_id: Server the job operates on. Not checked here; the worker
            fails the job if the server is gone by the time it runs.
        job_type: One of the JobType values

    Returns:
        Created Job instance (not yet committed)
    """
    job = Job(
        server_id=server_id,
        type=JobType(job_type).value,
        status=JobStatus.PENDING.value,
        progress=0,
        payload={},
        logs="",
    )
    session.add(job)
    return job


def enqueue(session: Session, server_id: str, job_type: str | JobType) -> Job:
    """
    Create a job record and publish it to the work queue.

    Multiple calls for the same server and type are allowed; each one
    produces an independent job.

    Returns:
        The committed Job, still PENDING

    Raises:
        Whatever the broker raised if publishing failed. The job is marked
        FAILED first so it doesn't sit in PENDING forever.
    """
    job = create_job(session, server_id, job_type)
    # The worker may pick the message up immediately, so the row must be
    # visible before publishing.
    session.commit()

    try:
        task = celery_app.send_task(
            PROCESS_SERVER_JOB,
            kwargs={"server_id": server_id, "job_id": job.id, "job_type": job.type},
        )
    except Exception as e:
        job.mark_failed(f"Failed to dispatch job: {e}")
        session.commit()
        logger.error(f"Failed to dispatch {job.type} job {job.id} for server {server_id}: {e}")
        raise

    job.celery_task_id = task.id
    session.commit()
    logger.info(f"Enqueued {job.type} job {job.id} for server {server_id}")
    return job


def enqueue_create(session: Session, server_id: str) -> Job:
    return enqueue(session, server_id, JobType.CREATE)


def enqueue_start(session: Session, server_id: str) -> Job:
    return enqueue(session, server_id, JobType.START)


def enqueue_stop(session: Session, server_id: str) -> Job:
    return enqueue(session, server_id, JobType.STOP)


def enqueue_restart(session: Session, server_id: str) -> Job:
    return enqueue(session, server_id, JobType.RESTART)


def enqueue_delete(session: Session, server_id: str) -> Job:
    return enqueue(session, server_id, JobType.DELETE)


def get_job(session: Session, job_id: str) -> Job | None:
    """Get a job by ID."""
    return session.get(Job, job_id)


def list_jobs(
    session: Session,
    server_id: str | None = None,
    status: str | JobStatus | None = None,
    job_type: str | JobType | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Job]:
    """List jobs, newest first, with optional filtering."""
    query = session.query(Job)

    if server_id:
        query = query.filter(Job.server_id == server_id)

    if status:
        query = query.filter(Job.status == JobStatus(status).value)

    if job_type:
        query = query.filter(Job.type == JobType(job_type).value)

    return query.order_by(Job.created_at.desc()).limit(limit).offset(offset).all()


def has_active_job(session: Session, server_id: str) -> bool:
    """Whether the server has a job that is queued or in flight."""
    active = (JobStatus.PENDING.value, JobStatus.RUNNING.value)
    return (
        session.query(Job.id)
        .filter(Job.server_id == server_id, Job.status.in_(active))
        .first()
        is not None
    )


def start_job(session: Session, job_id: str) -> Job | None:
    """Mark a job as running. Returns None if the job no longer exists."""
    job = session.get(Job, job_id)
    if not job:
        return None
    job.mark_running()
    logger.info(f"Job {job_id} ({job.type}) started for server {job.server_id}")
    return job


def update_progress(
    session: Session, job: Job, progress: int, message: str | None = None
) -> None:
    """Record a progress checkpoint (0-100) and make it visible to pollers."""
    job.progress = max(0, min(100, progress))
    if message:
        job.append_log(message)
    session.commit()


def complete_job(session: Session, job_id: str) -> Job | None:
    """Mark a job as successful. Returns None if the job no longer exists."""
    job = session.get(Job, job_id)
    if not job:
        return None
    job.mark_success()
    logger.info(f"Job {job_id} ({job.type}) completed")
    return job


def fail_job(session: Session, job_id: str, error: str) -> Job | None:
    """Mark a job as failed with the given error. Returns None if the job no longer exists."""
    job = session.get(Job, job_id)
    if not job:
        return None
    job.mark_failed(error)
    logger.warning(f"Job {job_id} ({job.type}) failed: {error}")
    return job


def serialize_job(job: Job) -> dict[str, Any]:
    """JSON-safe view of a job, as printed by the CLI."""
    return JobPayload.model_validate(job).model_dump(mode="json")
