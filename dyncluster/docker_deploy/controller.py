"""
Node lifecycle controller for the container backend

Creates, lists and removes node containers. Docker's create, start, remove
and list calls are only eventually consistent with each other, so the
controller re-lists after creation and polls after removal instead of trusting
the immediate results.
"""
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional

import docker

from ..cluster_control.node_manager import NodeManager
from ..errors import (
    CancellationError, ConsistencyError, DynClusterError, ResourceNotFoundError, TransientBackendError
)
from ..interfaces import INodeStateStore
from ..models import DeployNodeOptions, NodeInfo, NodeState
from ..utils.polling import wait_until
from .labels import CLUSTER_ID_LABEL, NodeLabels
from .state_store import ContainerStateStore
from .traffic_control import TrafficController

CONTAINER_NAME_PREFIX = "cbdynnode-"
MGMT_PORT = 8091


class DockerController:
    """Manages the lifecycle of individual node containers"""

    def __init__(
        self,
        docker_client: docker.DockerClient,
        network_name: str,
        state_store: Optional[INodeStateStore] = None,
        traffic_controller: Optional[TrafficController] = None,
        readiness_factory: Optional[Callable[[str], NodeManager]] = None,
        mgmt_port: int = MGMT_PORT,
        creator: str = "",
        remove_poll_interval: float = 0.1,
        remove_timeout: float = 120.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.client = docker_client
        self.network_name = network_name
        self.logger = logger or logging.getLogger(__name__)
        self.state_store = state_store or ContainerStateStore(docker_client, logger=self.logger)
        self.traffic_controller = traffic_controller or TrafficController(
            docker_client, network_name, logger=self.logger
        )
        self.readiness_factory = readiness_factory or (lambda endpoint: NodeManager(endpoint, logger=self.logger))
        self.mgmt_port = mgmt_port
        self.creator = creator
        self.remove_poll_interval = remove_poll_interval
        self.remove_timeout = remove_timeout

    def _parse_container(self, container) -> Optional[NodeInfo]:
        """Build a NodeInfo from container metadata, or None if it is not a managed node"""
        labels = NodeLabels.from_labels(container.labels)
        if labels is None:
            return None

        networks = (container.attrs.get("NetworkSettings") or {}).get("Networks") or {}
        picked = networks.get(self.network_name)
        if picked is None and networks:
            picked = list(networks.values())[-1]
        ip_address = (picked or {}).get("IPAddress", "")

        return NodeInfo(
            resource_id=container.id,
            node_id=labels.node_id,
            cluster_id=labels.cluster_id,
            name=labels.node_name,
            creator=labels.creator,
            purpose=labels.purpose,
            initial_server_version=labels.initial_server_version,
            ip_address=ip_address,
        )

    def list_nodes(self) -> List[NodeInfo]:
        """List all managed nodes, joining container labels with persisted state"""
        self.logger.debug("Listing nodes")

        try:
            containers = self.client.containers.list(
                all=True, filters={"label": CLUSTER_ID_LABEL}, ignore_removed=True
            )
        except docker.errors.APIError as e:
            raise TransientBackendError(f"failed to list containers: {e}") from e

        nodes = []
        for container in containers:
            node = self._parse_container(container)
            if node is None:
                continue

            try:
                state = self.state_store.read_state(node.resource_id)
            except DynClusterError as e:
                self.logger.warning(f"Could not read state of {node.resource_id[:12]}, expiry unknown: {e}")
                state = None

            if state is not None:
                node.expiry = state.expiry
            nodes.append(node)

        return nodes

    def write_node_state(self, resource_id: str, state: NodeState) -> None:
        self.state_store.write_state(resource_id, state)

    def read_node_state(self, resource_id: str) -> Optional[NodeState]:
        return self.state_store.read_state(resource_id)

    def set_traffic_control(self, resource_id: str, blocked: bool) -> None:
        self.traffic_controller.set_traffic_control(resource_id, blocked)

    def deploy_node(self, options: DeployNodeOptions, cancel: Optional[threading.Event] = None) -> NodeInfo:
        """
        Create and start a node container and wait for it to become ready.

        Nothing is rolled back on failure; orphaned containers are reclaimed
        by cleanup once their expiry passes.
        """
        node_id = str(uuid.uuid4())
        labels = NodeLabels(
            cluster_id=options.cluster_id,
            node_id=node_id,
            node_name=options.name,
            creator=self.creator,
            purpose=options.purpose,
            initial_server_version=options.image_server_version,
        )

        self.logger.info(f"Deploying node {node_id} for cluster {options.cluster_id} from {options.image.path}")

        try:
            container = self.client.containers.create(
                image=options.image.path,
                name=CONTAINER_NAME_PREFIX + node_id,
                labels=labels.to_labels(),
                network=self.network_name,
                cap_add=["NET_ADMIN"],
                auto_remove=True,
                # keeps container clocks in line with the host
                volumes={"/etc/localtime": {"bind": "/etc/localtime", "mode": "ro"}},
            )
        except docker.errors.APIError as e:
            raise TransientBackendError(f"failed to create container: {e}", node_id) from e

        resource_id = container.id
        self.logger.debug(f"Container {resource_id[:12]} created for node {node_id}, starting")

        try:
            container.start()
        except docker.errors.NotFound as e:
            raise ResourceNotFoundError(f"container vanished before start: {e}", resource_id) from e
        except docker.errors.APIError as e:
            raise TransientBackendError(f"failed to start container: {e}", resource_id) from e

        expiry = datetime.now(timezone.utc) + options.expiry
        self.state_store.write_state(resource_id, NodeState(expiry=expiry))

        # creation does not return network details, so pick them up from a fresh listing
        try:
            listed = self.list_nodes()
        except TransientBackendError as e:
            raise TransientBackendError(f"failed to list newly created container: {e.message}", node_id) from e

        node = next((n for n in listed if n.node_id == node_id), None)
        if node is None:
            raise ConsistencyError("failed to find newly created container", node_id)
        if not node.ip_address:
            raise ConsistencyError("newly created container has no ip address", node_id)

        endpoint = f"http://{node.ip_address}:{self.mgmt_port}"
        self.logger.debug(f"Node {node_id} started at {node.ip_address}, waiting for it to become ready")

        try:
            self.readiness_factory(endpoint).wait_for_online(cancel)
        except CancellationError as e:
            raise CancellationError(f"failed to wait for node readiness: {e.message}", node_id) from e

        self.logger.info(f"Node {node_id} is ready at {endpoint}")
        return node

    def _is_listed(self, resource_id: str) -> bool:
        return any(node.resource_id == resource_id for node in self.list_nodes())

    def remove_node(self, resource_id: str, cancel: Optional[threading.Event] = None) -> None:
        """
        Stop and remove a node container, returning once it no longer lists.

        A container that is already gone counts as removed.
        """
        self.logger.info(f"Removing node {resource_id[:12]}")

        try:
            container = self.client.containers.get(resource_id)
        except docker.errors.NotFound:
            self.logger.debug(f"Container {resource_id[:12]} is already gone")
            container = None
        except docker.errors.APIError as e:
            raise TransientBackendError(f"failed to inspect container: {e}", resource_id) from e

        if container is not None:
            self.logger.debug(f"Stopping container {resource_id[:12]}")
            try:
                container.stop()
            except docker.errors.NotFound:
                self.logger.debug(f"Container {resource_id[:12]} disappeared while stopping")
            except docker.errors.APIError as e:
                # 409: removal already in progress
                if e.status_code != 409:
                    raise TransientBackendError(f"failed to stop container: {e}", resource_id) from e

            # auto-remove is usually already taking care of this
            try:
                container.remove(force=True)
            except docker.errors.APIError as e:
                self.logger.debug(f"Remove request for {resource_id[:12]} not accepted: {e}")

        self.logger.debug(f"Waiting for container {resource_id[:12]} to disappear")
        wait_until(
            lambda: not self._is_listed(resource_id),
            interval=self.remove_poll_interval,
            timeout=self.remove_timeout,
            cancel=cancel,
            description=f"container {resource_id[:12]} to be removed",
        )

        self.logger.info(f"Node {resource_id[:12]} has been removed")
