"""
Container-backed implementation of the Deployer interface

Clusters are formed out of nodes deployed by the DockerController; everything
above the node level is done over the management REST API of the first node.
"""
import logging
import re
import threading
import uuid
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

import docker

from ..cluster_control.cluster_manager import ClusterManager
from ..cluster_control.node_manager import NodeManager
from ..config import AppConfig, DockerConfig
from ..errors import ConfigurationError, ResourceNotFoundError
from ..interfaces import IDeployer, IImageProvider
from ..models import (
    BucketInfo, ClusterDef, ClusterInfo, ClusterNodeInfo, ConnectInfo, CreateBucketOptions,
    CreateUserOptions, DeployNodeOptions, NodeGroupDef, NodeInfo, ScopeInfo, UserInfo
)
from .controller import DockerController
from .image_provider import DockerHubImageProvider

_NODE_INDEX_RE = re.compile(r"(\d+)$")


def _node_sort_key(node: NodeInfo) -> Tuple[int, str]:
    match = _NODE_INDEX_RE.search(node.name)
    return (int(match.group(1)) if match else 0, node.name)


def cluster_expiry(nodes: List[NodeInfo]) -> Optional[datetime]:
    """Earliest known node expiry, or None when no node has a known expiry"""
    known = [node.expiry for node in nodes if node.expiry is not None]
    return min(known) if known else None


class DockerDeployer(IDeployer):
    """Deploys clusters as groups of local Docker containers"""

    def __init__(
        self,
        controller: DockerController,
        image_provider: IImageProvider,
        config: Optional[DockerConfig] = None,
        cluster_manager_factory: Optional[Callable[[str], ClusterManager]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.controller = controller
        self.image_provider = image_provider
        self.config = config or DockerConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.cluster_manager_factory = cluster_manager_factory or (
            lambda endpoint: ClusterManager(
                endpoint, self.config.username, self.config.password,
                query_port=self.config.query_port, logger=self.logger,
            )
        )

    # Lookup helpers

    def _nodes_by_cluster(self) -> Dict[str, List[NodeInfo]]:
        clusters: Dict[str, List[NodeInfo]] = OrderedDict()
        for node in self.controller.list_nodes():
            clusters.setdefault(node.cluster_id, []).append(node)
        for nodes in clusters.values():
            nodes.sort(key=_node_sort_key)
        return clusters

    def _get_cluster_nodes(self, cluster_id: str) -> List[NodeInfo]:
        """Nodes of a cluster, matched by full id or unique id prefix"""
        clusters = self._nodes_by_cluster()
        if cluster_id in clusters:
            return clusters[cluster_id]

        matches = [cid for cid in clusters if cid.startswith(cluster_id)] if cluster_id else []
        if not matches:
            raise ResourceNotFoundError(f"cluster {cluster_id} not found")
        if len(matches) > 1:
            raise ConfigurationError(f"cluster id prefix {cluster_id} is ambiguous")
        return clusters[matches[0]]

    def _cluster_info(self, cluster_id: str, nodes: List[NodeInfo]) -> ClusterInfo:
        return ClusterInfo(
            cluster_id=cluster_id,
            purpose=nodes[0].purpose if nodes else "",
            expiry=cluster_expiry(nodes),
            state="ready",
            nodes=[
                ClusterNodeInfo(
                    node_id=node.node_id,
                    resource_id=node.resource_id,
                    name=node.name,
                    ip_address=node.ip_address,
                )
                for node in nodes
            ],
        )

    def _cluster_manager(self, node: NodeInfo) -> ClusterManager:
        return self.cluster_manager_factory(f"http://{node.ip_address}:{self.config.mgmt_port}")

    def _find_node(self, cluster_id: str, node_ref: str) -> NodeInfo:
        """Find a node of a cluster by node id, name or container id prefix"""
        for node in self._get_cluster_nodes(cluster_id):
            if node_ref in (node.node_id, node.name) or node.resource_id.startswith(node_ref):
                return node
        raise ResourceNotFoundError(f"node {node_ref} not found in cluster {cluster_id}")

    # Cluster lifecycle

    def list_clusters(self) -> List[ClusterInfo]:
        return [self._cluster_info(cid, nodes) for cid, nodes in self._nodes_by_cluster().items()]

    def _deploy_group_nodes(self, cluster_id: str, purpose: str, expiry: timedelta, group: NodeGroupDef,
                            first_index: int, count: int,
                            cancel: Optional[threading.Event]) -> List[NodeInfo]:
        image = self.image_provider.get_image(group.image_def())
        nodes = []
        for index in range(first_index, first_index + count):
            nodes.append(self.controller.deploy_node(DeployNodeOptions(
                purpose=purpose,
                expiry=expiry,
                cluster_id=cluster_id,
                image=image,
                image_server_version=group.version,
                name=f"node_{index}",
            ), cancel))
        return nodes

    def new_cluster(self, cluster_def: ClusterDef, cancel: Optional[threading.Event] = None) -> ClusterInfo:
        if cluster_def.node_count < 1:
            raise ConfigurationError("a cluster needs at least one node")

        cluster_id = str(uuid.uuid4())
        self.logger.info(f"Creating cluster {cluster_id} with {cluster_def.node_count} nodes")

        deployed: List[Tuple[NodeInfo, List[str]]] = []
        for group in cluster_def.node_groups:
            nodes = self._deploy_group_nodes(
                cluster_id, cluster_def.purpose, cluster_def.expiry, group,
                first_index=len(deployed) + 1, count=group.count, cancel=cancel,
            )
            deployed.extend((node, group.services) for node in nodes)

        first_node, first_services = deployed[0]
        manager = self._cluster_manager(first_node)
        manager.init_cluster(
            first_node.ip_address, first_services,
            memory_quota_mb=self.config.memory_quota_mb,
            index_memory_quota_mb=self.config.index_memory_quota_mb,
        )

        if len(deployed) > 1:
            for node, services in deployed[1:]:
                manager.add_node(node.ip_address, services)
            manager.rebalance()
            manager.wait_for_rebalance(
                interval=self.config.readiness_interval,
                timeout=self.config.rebalance_timeout,
                cancel=cancel,
            )

        self.logger.info(f"Cluster {cluster_id} is ready")
        return self._cluster_info(cluster_id, [node for node, _ in deployed])

    def get_definition(self, cluster_id: str) -> ClusterDef:
        nodes = self._get_cluster_nodes(cluster_id)

        groups: Dict[str, NodeGroupDef] = OrderedDict()
        for node in nodes:
            version = node.initial_server_version
            if version in groups:
                groups[version].count += 1
            else:
                groups[version] = NodeGroupDef(count=1, version=version)

        expiry = cluster_expiry(nodes)
        remaining = timedelta()
        if expiry is not None:
            remaining = max(expiry - datetime.now(timezone.utc), timedelta())

        return ClusterDef(purpose=nodes[0].purpose, expiry=remaining, node_groups=list(groups.values()))

    def modify_cluster(self, cluster_id: str, cluster_def: ClusterDef,
                       cancel: Optional[threading.Event] = None) -> None:
        """Grow or shrink a cluster to the node count of the new definition"""
        nodes = self._get_cluster_nodes(cluster_id)
        cluster_id = nodes[0].cluster_id
        target = cluster_def.node_count
        current = len(nodes)

        if target < 1:
            raise ConfigurationError("a cluster needs at least one node")
        if target == current:
            self.logger.info(f"Cluster {cluster_id} already has {current} nodes")
            return

        manager = self._cluster_manager(nodes[0])

        if target > current:
            group = cluster_def.node_groups[-1]
            expiry = cluster_expiry(nodes)
            remaining = cluster_def.expiry if expiry is None else max(
                expiry - datetime.now(timezone.utc), timedelta()
            )
            self.logger.info(f"Growing cluster {cluster_id} from {current} to {target} nodes")

            added = self._deploy_group_nodes(
                cluster_id, nodes[0].purpose, remaining, group,
                first_index=_node_sort_key(nodes[-1])[0] + 1, count=target - current, cancel=cancel,
            )
            for node in added:
                manager.add_node(node.ip_address, group.services)
            manager.rebalance()
            manager.wait_for_rebalance(
                interval=self.config.readiness_interval, timeout=self.config.rebalance_timeout, cancel=cancel
            )
        else:
            surplus = nodes[target:]
            self.logger.info(f"Shrinking cluster {cluster_id} from {current} to {target} nodes")

            manager.rebalance(ejected_hostnames=[node.ip_address for node in surplus])
            manager.wait_for_rebalance(
                interval=self.config.readiness_interval, timeout=self.config.rebalance_timeout, cancel=cancel
            )
            for node in surplus:
                self.controller.remove_node(node.resource_id, cancel)

    def remove_cluster(self, cluster_id: str, cancel: Optional[threading.Event] = None) -> None:
        nodes = self._get_cluster_nodes(cluster_id)
        self.logger.info(f"Removing cluster {nodes[0].cluster_id} ({len(nodes)} nodes)")
        for node in nodes:
            self.controller.remove_node(node.resource_id, cancel)

    def remove_all(self, cancel: Optional[threading.Event] = None) -> None:
        nodes = self.controller.list_nodes()
        self.logger.info(f"Removing all {len(nodes)} nodes")
        for node in nodes:
            self.controller.remove_node(node.resource_id, cancel)

    def cleanup(self, cancel: Optional[threading.Event] = None) -> None:
        """Remove clusters whose expiry has passed; clusters with unknown expiry are kept"""
        now = datetime.now(timezone.utc)
        for cluster_id, nodes in self._nodes_by_cluster().items():
            expiry = cluster_expiry(nodes)
            if expiry is None:
                self.logger.warning(f"Cluster {cluster_id} has no known expiry, leaving it in place")
                continue
            if expiry > now:
                continue

            self.logger.info(f"Cluster {cluster_id} expired at {expiry.isoformat()}, removing")
            for node in nodes:
                self.controller.remove_node(node.resource_id, cancel)

    # Connection and fault injection

    def get_connect_info(self, cluster_id: str) -> ConnectInfo:
        nodes = self._get_cluster_nodes(cluster_id)
        return ConnectInfo(
            conn_str="couchbase://" + ",".join(node.ip_address for node in nodes),
            mgmt=f"http://{nodes[0].ip_address}:{self.config.mgmt_port}",
        )

    def block_node_traffic(self, cluster_id: str, node_ref: str) -> None:
        node = self._find_node(cluster_id, node_ref)
        self.controller.set_traffic_control(node.resource_id, True)

    def allow_node_traffic(self, cluster_id: str, node_ref: str) -> None:
        node = self._find_node(cluster_id, node_ref)
        self.controller.set_traffic_control(node.resource_id, False)

    # Users, buckets, collections

    def _manager_for(self, cluster_id: str) -> ClusterManager:
        return self._cluster_manager(self._get_cluster_nodes(cluster_id)[0])

    def list_users(self, cluster_id: str) -> List[UserInfo]:
        return self._manager_for(cluster_id).list_users()

    def create_user(self, cluster_id: str, opts: CreateUserOptions) -> None:
        self._manager_for(cluster_id).create_user(opts)

    def delete_user(self, cluster_id: str, username: str) -> None:
        self._manager_for(cluster_id).delete_user(username)

    def list_buckets(self, cluster_id: str) -> List[BucketInfo]:
        return self._manager_for(cluster_id).list_buckets()

    def create_bucket(self, cluster_id: str, opts: CreateBucketOptions) -> None:
        self._manager_for(cluster_id).create_bucket(opts)

    def delete_bucket(self, cluster_id: str, bucket_name: str) -> None:
        self._manager_for(cluster_id).delete_bucket(bucket_name)

    def get_certificate(self, cluster_id: str) -> str:
        return self._manager_for(cluster_id).get_certificate()

    def execute_query(self, cluster_id: str, query: str) -> str:
        return self._manager_for(cluster_id).execute_query(query)

    def list_collections(self, cluster_id: str, bucket_name: str) -> List[ScopeInfo]:
        return self._manager_for(cluster_id).list_collections(bucket_name)

    def create_scope(self, cluster_id: str, bucket_name: str, scope_name: str) -> None:
        self._manager_for(cluster_id).create_scope(bucket_name, scope_name)

    def create_collection(self, cluster_id: str, bucket_name: str, scope_name: str,
                          collection_name: str) -> None:
        self._manager_for(cluster_id).create_collection(bucket_name, scope_name, collection_name)

    def delete_scope(self, cluster_id: str, bucket_name: str, scope_name: str) -> None:
        self._manager_for(cluster_id).delete_scope(bucket_name, scope_name)

    def delete_collection(self, cluster_id: str, bucket_name: str, scope_name: str,
                          collection_name: str) -> None:
        self._manager_for(cluster_id).delete_collection(bucket_name, scope_name, collection_name)


def new_docker_deployer(config: Optional[AppConfig] = None,
                        docker_client: Optional[docker.DockerClient] = None,
                        logger: Optional[logging.Logger] = None) -> DockerDeployer:
    """Wire up a DockerDeployer from configuration"""
    config = config or AppConfig()
    docker_config = config.docker
    client = docker_client or docker.from_env()
    logger = logger or logging.getLogger("dyncluster")

    controller = DockerController(
        client,
        docker_config.network_name,
        readiness_factory=lambda endpoint: NodeManager(
            endpoint,
            interval=docker_config.readiness_interval,
            timeout=docker_config.readiness_timeout,
            logger=logger,
        ),
        mgmt_port=docker_config.mgmt_port,
        creator=config.creator,
        remove_poll_interval=docker_config.remove_poll_interval,
        remove_timeout=docker_config.remove_timeout,
        logger=logger,
    )
    image_provider = DockerHubImageProvider(client, repository=docker_config.image_repository, logger=logger)
    return DockerDeployer(controller, image_provider, config=docker_config, logger=logger)
