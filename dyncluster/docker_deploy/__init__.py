"""
Docker Deploy - container-backed node lifecycle and cluster deployment

Components:
- DockerController: node create/list/remove with readiness gating
- ContainerStateStore: node state persisted inside the container
- TrafficController: iptables-based network partition injection
- DockerHubImageProvider / compare_image_defs: image resolution and ordering
- DockerDeployer: cluster-level Deployer built on the controller
"""
from .controller import DockerController
from .deployer import DockerDeployer, new_docker_deployer
from .image_provider import DockerHubImageProvider
from .image_selector import compare_image_defs, sort_image_defs
from .labels import NodeLabels
from .state_store import ContainerStateStore
from .traffic_control import TrafficController

__all__ = [
    'DockerController',
    'DockerDeployer',
    'new_docker_deployer',
    'DockerHubImageProvider',
    'compare_image_defs',
    'sort_image_defs',
    'NodeLabels',
    'ContainerStateStore',
    'TrafficController',
]
