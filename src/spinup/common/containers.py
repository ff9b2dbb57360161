"""
Thin wrapper around the Docker Engine for server lifecycle operations.

Docker SDK errors are translated into the provisioning error taxonomy so
that job errors read the same regardless of which call failed.
"""

import logging
from typing import Any, Callable, cast

import docker
from docker.errors import APIError, DockerException, NotFound
from docker.models.containers import Container

from spinup.common import settings
from spinup.common.errors import ExternalServiceError, NotFoundError

logger = logging.getLogger(__name__)

MANAGED_BY_LABEL = "managed-by"
MANAGED_BY = "spinup"
SERVER_ID_LABEL = "spinup.server-id"

_client: docker.DockerClient | None = None


def get_docker_client() -> docker.DockerClient:
    """Get a cached Docker client for DOCKER_HOST."""
    global _client
    if _client is None:
        try:
            _client = docker.DockerClient(
                base_url=settings.DOCKER_HOST, timeout=settings.DOCKER_TIMEOUT
            )
        except DockerException as e:
            raise ExternalServiceError(f"Cannot connect to Docker daemon: {e}") from e
    return _client


def split_image(image: str) -> tuple[str, str]:
    """Split "repo[:tag]" into repository and tag, defaulting to latest."""
    # A colon before the last slash belongs to a registry host:port
    name, sep, tag = image.rpartition(":")
    if not sep or "/" in tag:
        return image, "latest"
    return name, tag


def pull_image(image: str, on_event: Callable[[dict[str, Any]], None] | None = None) -> None:
    """
    Pull an image, streaming progress events to `on_event`.

    Raises:
        ExternalServiceError: if the daemon refuses the pull or reports an
            error part-way through the stream
    """
    repository, tag = split_image(image)
    client = get_docker_client()
    try:
        for event in client.api.pull(repository, tag=tag, stream=True, decode=True):
            if error := event.get("error"):
                raise ExternalServiceError(f"Failed to pull image {image}: {error}")
            if on_event:
                on_event(event)
    except DockerException as e:
        raise ExternalServiceError(f"Failed to pull image {image}: {e}") from e
    logger.info(f"Pulled image {image}")


def create_container(image: str, name: str, **options: Any) -> str:
    """Create (but don't start) a container. Returns its id."""
    client = get_docker_client()
    try:
        container = cast(
            Container,
            client.containers.create(image, name=name, **options),
        )
    except DockerException as e:
        raise ExternalServiceError(f"Failed to create container {name}: {e}") from e
    logger.info(f"Created container {name} ({container.short_id})")
    return cast(str, container.id)


def inspect_container(container_id: str) -> dict[str, Any]:
    client = get_docker_client()
    try:
        return client.api.inspect_container(container_id)
    except NotFound as e:
        raise NotFoundError("Container not found") from e
    except DockerException as e:
        raise ExternalServiceError(f"Failed to inspect container {container_id}: {e}") from e


def start_container(container_id: str) -> None:
    client = get_docker_client()
    try:
        client.api.start(container_id)
    except NotFound as e:
        raise NotFoundError("Container not found") from e
    except DockerException as e:
        raise ExternalServiceError(f"Failed to start container {container_id}: {e}") from e


def stop_container(container_id: str, timeout: int) -> bool:
    """
    Stop a container, giving it `timeout` seconds before it is killed.

    Returns:
        False if the container was already stopped, True otherwise
    """
    client = get_docker_client()
    try:
        client.api.stop(container_id, timeout=timeout)
    except NotFound as e:
        raise NotFoundError("Container not found") from e
    except APIError as e:
        if e.status_code == 304:
            logger.info(f"Container {container_id} already stopped")
            return False
        raise ExternalServiceError(f"Failed to stop container {container_id}: {e}") from e
    except DockerException as e:
        raise ExternalServiceError(f"Failed to stop container {container_id}: {e}") from e
    return True


def restart_container(container_id: str, timeout: int) -> None:
    client = get_docker_client()
    try:
        client.api.restart(container_id, timeout=timeout)
    except NotFound as e:
        raise NotFoundError("Container not found") from e
    except DockerException as e:
        raise ExternalServiceError(f"Failed to restart container {container_id}: {e}") from e


def remove_container(container_id: str) -> None:
    client = get_docker_client()
    try:
        client.api.remove_container(container_id, force=True)
    except NotFound as e:
        raise NotFoundError("Container not found") from e
    except DockerException as e:
        raise ExternalServiceError(f"Failed to remove container {container_id}: {e}") from e


def published_host_ports() -> set[int]:
    """Host ports published by any container, running or stopped."""
    client = get_docker_client()
    try:
        containers = client.api.containers(all=True)
    except DockerException as e:
        raise ExternalServiceError(f"Failed to list containers: {e}") from e

    ports: set[int] = set()
    for info in containers:
        for binding in info.get("Ports") or []:
            if public := binding.get("PublicPort"):
                ports.add(int(public))
    return ports
