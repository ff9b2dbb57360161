"""
Celery task that executes server lifecycle jobs.

One message per Job row. The Job row is the source of truth: the task only
reads ids from the message and reports everything else through the ledger.
"""

import logging
from typing import Any

from spinup.common import jobs
from spinup.common.celery_app import PROCESS_SERVER_JOB, app
from spinup.common.db.connection import make_session
from spinup.common.db.models import JobType, Server, ServerStatus
from spinup.common.errors import ConflictError, NotFoundError
from spinup.common.games import get_game
from spinup.workers.lifecycle import HANDLERS

logger = logging.getLogger(__name__)


def mark_server_error(session, server_id: str) -> None:
    if server := session.get(Server, server_id):
        server.status = ServerStatus.ERROR.value


@app.task(name=PROCESS_SERVER_JOB)
def process_server_job(server_id: str, job_id: str, job_type: str) -> dict[str, Any]:
    logger.info(f"Processing {job_type} job {job_id} for server {server_id}")

    with make_session() as session:
        job = jobs.get_job(session, job_id)
        if not job:
            logger.warning(f"Job {job_id} no longer exists, skipping")
            return {"status": "skipped", "job_id": job_id, "reason": "job_not_found"}
        if job.is_finished:
            # Redelivered after the job already ran to completion
            logger.info(f"Job {job_id} is already {job.status}, skipping")
            return {"status": "skipped", "job_id": job_id, "reason": "already_finished"}

        # The row decides what runs, not the message
        job_type = job.type
        try:
            kind = JobType(job_type)
            server = session.get(Server, server_id)
            if not server:
                raise NotFoundError(f"Server {server_id} not found")
            game = get_game(server.game_key)
            if not game:
                raise ConflictError(f"Unknown game: {server.game_key}")

            jobs.start_job(session, job_id)
            session.commit()

            HANDLERS[kind](session, server, job, game)
        except Exception as e:
            session.rollback()
            jobs.fail_job(session, job_id, str(e))
            if job_type == JobType.CREATE.value:
                mark_server_error(session, server_id)
            session.commit()
            logger.exception(f"{job_type} job {job_id} for server {server_id} failed")
            raise

        # DELETE removes the server, and the job with it
        if jobs.complete_job(session, job_id):
            session.commit()

    return {"status": "success", "job_id": job_id, "server_id": server_id, "type": job_type}
