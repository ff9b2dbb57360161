"""
Host port allocation for game server containers.

Ports are mapped 1:1 (host port == container port) when the container
port lies inside [PORT_RANGE_MIN, PORT_RANGE_MAX] and is free. Otherwise the
first free port at or above the scan start within that range is used.

A candidate is free only if none of these know it:
    - the ports already picked earlier in the same job (`reserved`)
    - the ports persisted on any Server row (ledger)
    - the host ports published by any container (Docker daemon)
    - the sockets open on this machine (system)

If a check can't be performed the port is treated as taken.
"""

import logging
import socket
from collections.abc import Iterable
from contextlib import contextmanager

import psutil
import redis
from redis.exceptions import LockError
from sqlalchemy.orm import Session

from spinup.common import containers, settings
from spinup.common.db.models import Server
from spinup.common.errors import ConflictError, ResourceExhaustedError

logger = logging.getLogger(__name__)

PORT_LOCK_KEY = "spinup:lock:port-allocation"


def ledger_ports(session: Session) -> set[int]:
    """Host ports recorded on any server."""
    allocated: set[int] = set()
    for server in session.query(Server).all():
        allocated |= server.host_ports
    return allocated


def is_port_used_by_docker(port: int) -> bool:
    """Whether any container, running or stopped, publishes `port` on the host."""
    try:
        return port in containers.published_host_ports()
    except Exception as e:
        logger.error(f"Error checking Docker ports, assuming {port} is in use: {e}")
        return True


def is_port_used_by_system(port: int) -> bool:
    """Whether any socket on this machine is bound to `port` (TCP or UDP)."""
    try:
        connections = psutil.net_connections(kind="inet")
    except (psutil.Error, OSError) as e:
        logger.error(f"Error checking system ports, assuming {port} is in use: {e}")
        return True

    for conn in connections:
        if not conn.laddr or conn.laddr.port != port:
            continue
        # UDP sockets have no status; bound is enough
        if conn.type == socket.SOCK_DGRAM or conn.status == psutil.CONN_LISTEN:
            return True
    return False


def scan_start(container_port: int) -> int:
    if settings.PORT_RANGE_MIN <= container_port <= settings.PORT_RANGE_MAX:
        return container_port
    return settings.PORT_RANGE_MIN


def allocate_host_port(
    session: Session,
    container_port: int,
    reserved: Iterable[int] | None = None,
) -> int:
    """
    Pick a host port for `container_port`.

    Args:
        session: Database session used to read the ledger
        container_port: Port the game listens on inside the container
        reserved: Ports already chosen earlier in the same job but not yet
            persisted. The caller adds each result before the next call.

    Raises:
        ResourceExhaustedError: if no port in the range is free
    """
    taken = ledger_ports(session) | set(reserved or ())

    for candidate in range(scan_start(container_port), settings.PORT_RANGE_MAX + 1):
        if candidate in taken:
            continue
        if is_port_used_by_docker(candidate):
            logger.debug(f"Port {candidate} is published by a container, skipping")
            continue
        if is_port_used_by_system(candidate):
            logger.debug(f"Port {candidate} is in use on the host, skipping")
            continue
        logger.info(f"Allocated host port {candidate} for container port {container_port}")
        return candidate

    raise ResourceExhaustedError(
        f"No available ports in range {settings.PORT_RANGE_MIN}-{settings.PORT_RANGE_MAX}"
    )


@contextmanager
def port_allocation_lock():
    """
    Serialize port allocation across workers with a Redis lock.

    Held from the first allocation until the chosen ports are persisted, so
    two CREATE jobs can't both pick a port that neither has recorded yet.
    Does nothing when PORT_ALLOCATION_LOCK is off.
    """
    if not settings.PORT_ALLOCATION_LOCK:
        yield
        return

    redis_client = redis.from_url(settings.REDIS_URL)
    lock = redis_client.lock(
        PORT_LOCK_KEY,
        timeout=settings.PORT_ALLOCATION_LOCK_TIMEOUT,
        blocking_timeout=settings.PORT_ALLOCATION_LOCK_WAIT,
    )
    if not lock.acquire():
        raise ConflictError(
            f"Could not acquire port allocation lock within {settings.PORT_ALLOCATION_LOCK_WAIT}s"
        )

    try:
        yield
    finally:
        try:
            lock.release()
        except LockError as e:
            # Expired while held - another job may already own it
            logger.warning(f"Port allocation lock was lost before release: {e}")
