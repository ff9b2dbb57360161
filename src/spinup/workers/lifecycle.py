"""
Lifecycle handlers that act on a server's container.

Each handler takes (session, server, job, game), does its work against the
Docker daemon and updates the server row. Errors propagate to the caller,
which records them on the job. Nothing done before a failure is undone: a
failed CREATE can leave a pulled image and an empty server directory behind.
"""

import logging
import os
import pathlib
import shutil
from typing import Any, Callable

from sqlalchemy.orm import Session

from spinup.common import containers, jobs, ports, settings
from spinup.common.db.models import CustomScript, Job, JobType, Server, ServerStatus
from spinup.common.errors import NotFoundError, ScriptValidationError, SpinupError
from spinup.common.games import GameImage, PortSpec
from spinup.common.scripts import PLACEHOLDER_SCRIPT, verify_script_hash

logger = logging.getLogger(__name__)

Handler = Callable[[Session, Server, Job, GameImage], None]

PULL_PROGRESS = 30
PORTS_PROGRESS = 60


def server_root(server: Server) -> pathlib.Path:
    return settings.DATA_DIR / server.id


def server_data_dir(server: Server) -> pathlib.Path:
    return server_root(server) / "data"


def container_name(server: Server) -> str:
    return f"{settings.CONTAINER_NAME_PREFIX}{server.id}"


def require_container(server: Server) -> str:
    if not server.container_id:
        raise NotFoundError("No container ID found")
    return server.container_id


def pull_logger(job: Job, image: str) -> Callable[[dict[str, Any]], None]:
    """Build a pull-event callback that records status changes in the job log."""
    seen: set[str] = set()

    def on_event(event: dict[str, Any]) -> None:
        status = event.get("status")
        if not status:
            return
        # Layer download events repeat endlessly; keep one line per status per layer
        key = f"{event.get('id', '')}:{status}"
        if key in seen:
            return
        seen.add(key)
        job.append_log(f"Pulling {image}: {status}")

    return on_event


def write_startup_script(server: Server, script: CustomScript | None) -> pathlib.Path:
    """Write the server's startup script next to its data dir and return the path."""
    if script is None:
        content = PLACEHOLDER_SCRIPT
        logger.info(f"No custom script for server {server.id}, using placeholder")
    else:
        if not verify_script_hash(script.content, script.content_hash):
            raise ScriptValidationError(["Stored script does not match its recorded hash"])
        content = script.content

    path = server_root(server) / "server_init.sh"
    path.write_text(content)
    # The mount is read-only, so the entrypoint can't chmod it itself
    os.chmod(path, 0o755)
    return path


def declared_ports(game: GameImage, script: CustomScript | None) -> list[PortSpec]:
    if not game.is_custom:
        return list(game.ports)
    if script and script.port_specs:
        return [PortSpec(int(p["container"]), p.get("proto", "tcp")) for p in script.port_specs]
    return [PortSpec(settings.CUSTOM_DEFAULT_PORT, "tcp")]


def declared_env(game: GameImage, script: CustomScript | None, specs: list[PortSpec]) -> dict[str, str]:
    environment = dict(game.env_defaults)
    if game.is_custom:
        if specs:
            environment.setdefault("SERVER_PORT", str(specs[0].container))
        if script:
            environment.update(script.env_vars or {})
    return environment


def allocate_ports(session: Session, specs: list[PortSpec]) -> list[dict[str, Any]]:
    """Allocate a host port per declared container port, without collisions within the job."""
    reserved: set[int] = set()
    mappings = []
    for spec in specs:
        host = ports.allocate_host_port(session, spec.container, reserved)
        reserved.add(host)
        mappings.append({"container": spec.container, "host": host, "proto": spec.proto})
    return mappings


def build_container_options(
    server: Server,
    game: GameImage,
    mappings: list[dict[str, Any]],
    environment: dict[str, str],
    script_path: pathlib.Path | None,
) -> dict[str, Any]:
    volumes: dict[str, dict[str, str]] = {
        str(server_data_dir(server)): {"bind": game.data_path, "mode": "rw"},
    }
    if script_path:
        volumes[str(script_path)] = {"bind": settings.CUSTOM_SCRIPT_MOUNT, "mode": "ro"}

    memory = server.memory_cap * 1024 * 1024
    return {
        "hostname": f"spinup-{server.name}",
        "ports": {f"{m['container']}/{m['proto']}": m["host"] for m in mappings},
        "volumes": volumes,
        "environment": environment,
        "labels": {
            containers.MANAGED_BY_LABEL: containers.MANAGED_BY,
            containers.SERVER_ID_LABEL: server.id,
        },
        # Same memory and memory+swap limit disables swap
        "mem_limit": memory,
        "memswap_limit": memory,
        "cpu_shares": server.cpu_shares,
        "restart_policy": {"Name": settings.CONTAINER_RESTART_POLICY},
        "security_opt": ["no-new-privileges:true"],
    }


def create_server(session: Session, server: Server, job: Job, game: GameImage) -> None:
    server_data_dir(server).mkdir(parents=True, exist_ok=True)

    containers.pull_image(game.image, pull_logger(job, game.image))
    jobs.update_progress(session, job, PULL_PROGRESS, f"Pulled image {game.image}")

    script = server.custom_script if game.is_custom else None
    script_path = write_startup_script(server, script) if game.is_custom else None
    specs = declared_ports(game, script)
    environment = declared_env(game, script, specs)

    # Ports must stay reserved until they are persisted on the server row
    with ports.port_allocation_lock():
        mappings = allocate_ports(session, specs)
        jobs.update_progress(
            session,
            job,
            PORTS_PROGRESS,
            "Allocated ports: "
            + (", ".join(f"{m['host']}->{m['container']}/{m['proto']}" for m in mappings) or "none"),
        )

        options = build_container_options(server, game, mappings, environment, script_path)
        container_id = containers.create_container(game.image, container_name(server), **options)

        server.container_id = container_id
        server.ports = mappings
        server.status = ServerStatus.STOPPED.value
        jobs.update_progress(session, job, 100, f"Created container {container_id[:12]}")


def start_server(session: Session, server: Server, job: Job, game: GameImage) -> None:
    container_id = require_container(server)
    containers.inspect_container(container_id)
    containers.start_container(container_id)
    server.status = ServerStatus.RUNNING.value
    jobs.update_progress(session, job, 100, "Container started")


def stop_server(session: Session, server: Server, job: Job, game: GameImage) -> None:
    container_id = require_container(server)
    if containers.stop_container(container_id, timeout=settings.STOP_TIMEOUT):
        message = "Container stopped"
    else:
        message = "Container was already stopped"
    server.status = ServerStatus.STOPPED.value
    jobs.update_progress(session, job, 100, message)


def restart_server(session: Session, server: Server, job: Job, game: GameImage) -> None:
    container_id = require_container(server)
    containers.restart_container(container_id, timeout=settings.RESTART_TIMEOUT)
    server.status = ServerStatus.RUNNING.value
    jobs.update_progress(session, job, 100, "Container restarted")


def delete_server(session: Session, server: Server, job: Job, game: GameImage) -> None:
    """Tear everything down and remove the server row (and with it, this job)."""
    server_id = server.id
    if container_id := server.container_id:
        try:
            containers.stop_container(container_id, timeout=settings.DELETE_STOP_TIMEOUT)
        except SpinupError as e:
            logger.debug(f"Ignoring stop failure for {container_id}: {e}")
        try:
            containers.remove_container(container_id)
        except SpinupError as e:
            logger.debug(f"Ignoring remove failure for {container_id}: {e}")

    root = server_root(server)
    try:
        if root.exists():
            shutil.rmtree(root)
    except OSError as e:
        logger.error(f"Failed to remove data directory {root}: {e}")

    session.delete(server)
    session.commit()
    logger.info(f"Deleted server {server_id}")


HANDLERS: dict[JobType, Handler] = {
    JobType.CREATE: create_server,
    JobType.START: start_server,
    JobType.STOP: stop_server,
    JobType.RESTART: restart_server,
    JobType.DELETE: delete_server,
}

if missing := set(JobType) - set(HANDLERS):
    raise RuntimeError(f"No lifecycle handler for job types: {sorted(t.value for t in missing)}")
