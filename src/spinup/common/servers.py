"""
Request-side guards for server lifecycle operations.

These are the checks applied before anything is enqueued. The raw
`spinup.common.jobs.enqueue_*` functions don't apply them.
"""

import logging
import re
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from spinup.common import jobs
from spinup.common.db.models import Job, JobType, Server, ServerPayload, ServerStatus
from spinup.common.errors import ConflictError, NotFoundError
from spinup.common.games import get_game
from spinup.common.scripts import save_custom_script

logger = logging.getLogger(__name__)

SERVER_NAME_PATTERN = re.compile(r"^[a-z0-9-]{3,50}$")

# Servers in these states can't be started, stopped or restarted
BUSY_STATUSES = (ServerStatus.CREATING.value, ServerStatus.DELETING.value)


def get_server(session: Session, server_id: str) -> Server:
    server = session.get(Server, server_id)
    if not server:
        raise NotFoundError(f"Server {server_id} not found")
    return server


def list_servers(session: Session, org_id: str | None = None) -> list[Server]:
    query = session.query(Server)
    if org_id:
        query = query.filter(Server.org_id == org_id)
    return query.order_by(Server.created_at.desc()).all()


def serialize_server(server: Server) -> dict[str, Any]:
    return ServerPayload.model_validate(server).model_dump(mode="json")


def create_server(
    session: Session,
    org_id: str,
    name: str,
    game_key: str,
    created_by: str | None = None,
    memory_cap: int | None = None,
    cpu_shares: int | None = None,
    script: str | None = None,
    port_specs: list[dict[str, Any]] | None = None,
    env_vars: dict[str, str] | None = None,
) -> tuple[Server, Job]:
    """
    Register a new server and enqueue its CREATE job.

    A startup script can only be given for the custom adapter; it is
    validated and stored before the job is enqueued.

    Raises:
        ConflictError: if the name is invalid, the game is unknown, or a
            script is given for a catalog game
        ScriptValidationError: if the script is rejected
    """
    if not SERVER_NAME_PATTERN.match(name):
        raise ConflictError(
            "Server name must be 3-50 characters of lowercase letters, digits and hyphens"
        )

    game = get_game(game_key)
    if not game:
        raise ConflictError(f"Unknown game: {game_key}")
    if script is not None and not game.is_custom:
        raise ConflictError(f"Startup scripts are only supported for the custom game, not {game_key}")

    server = Server(
        org_id=org_id,
        name=name,
        game_key=game.key,
        status=ServerStatus.CREATING.value,
        ports=[],
        memory_cap=memory_cap or game.memory_mb,
        cpu_shares=cpu_shares or game.cpu_shares,
        created_by=created_by,
    )
    session.add(server)
    session.flush()

    if script is not None:
        save_custom_script(session, server.id, script, port_specs, env_vars)

    job = jobs.enqueue_create(session, server.id)
    logger.info(f"Requested creation of server {server.id} ({name}, {game.key})")
    return server, job


def ensure_operable(session: Session, server: Server) -> None:
    if server.status in BUSY_STATUSES:
        raise ConflictError(f"Server is {server.status.lower()}, try again later")
    if jobs.has_active_job(session, server.id):
        raise ConflictError("Server already has a job in progress")


def request_start(session: Session, server_id: str) -> Job:
    server = get_server(session, server_id)
    ensure_operable(session, server)
    return jobs.enqueue_start(session, server.id)


def request_stop(session: Session, server_id: str) -> Job:
    server = get_server(session, server_id)
    ensure_operable(session, server)
    return jobs.enqueue_stop(session, server.id)


def request_restart(session: Session, server_id: str) -> Job:
    server = get_server(session, server_id)
    ensure_operable(session, server)
    return jobs.enqueue_restart(session, server.id)


REQUESTS = {
    JobType.START: request_start,
    JobType.STOP: request_stop,
    JobType.RESTART: request_restart,
}


def request_delete(session: Session, server_id: str) -> Job:
    """
    Move the server to DELETING and enqueue its DELETE job.

    The status change is a single conditional UPDATE, so of two concurrent
    requests only one enqueues a DELETE. If the job can't be published the
    server gets its previous status back.
    """
    server = get_server(session, server_id)
    previous_status = server.status
    result = session.execute(
        update(Server)
        .where(Server.id == server_id, Server.status != ServerStatus.DELETING.value)
        .values(status=ServerStatus.DELETING.value)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise ConflictError("Server is already being deleted")

    try:
        return jobs.enqueue_delete(session, server_id)
    except Exception:
        server.status = previous_status
        session.commit()
        logger.warning(f"Restored server {server_id} to {previous_status} after failed DELETE dispatch")
        raise
