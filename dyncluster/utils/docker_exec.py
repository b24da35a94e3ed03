"""
Helpers for talking to containers through the Docker SDK
"""
import logging
from typing import List, Optional

import docker

from ..errors import CommandExecutionError, ResourceNotFoundError, TransientBackendError

logger = logging.getLogger(__name__)


def get_container(client: docker.DockerClient, resource_id: str):
    """Look up a container, translating SDK errors into dyncluster errors"""
    try:
        return client.containers.get(resource_id)
    except docker.errors.NotFound as e:
        raise ResourceNotFoundError(f"container not found: {e}", resource_id) from e
    except docker.errors.APIError as e:
        raise TransientBackendError(f"failed to inspect container: {e}", resource_id) from e


def exec_command(container, cmd: List[str], log: Optional[logging.Logger] = None) -> str:
    """
    Run a command inside a container and return its output.

    Output lines are piped to the debug log. A non-zero exit status raises
    CommandExecutionError with the captured output attached.
    """
    log = log or logger
    log.debug(f"Executing {cmd} in container {container.id[:12]}")

    try:
        result = container.exec_run(cmd)
    except docker.errors.NotFound as e:
        raise ResourceNotFoundError(f"container disappeared while executing {cmd[0]}", container.id) from e
    except docker.errors.APIError as e:
        raise TransientBackendError(f"failed to execute {cmd[0]}: {e}", container.id) from e

    output = result.output.decode("utf-8", errors="replace") if result.output else ""
    for line in output.splitlines():
        log.debug(f"  [{cmd[0]}] {line}")

    if result.exit_code != 0:
        raise CommandExecutionError(cmd, result.exit_code, output, resource_id=container.id)
    return output
