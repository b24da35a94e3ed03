"""
Network partition fault injection using iptables inside node containers

Rules are applied inside the container rather than on the host, so only the
node under test is affected. Traffic from the network gateway is always
accepted so the node stays reachable from the host while it is cut off from
its peers.
"""
import logging
from typing import List, Optional, Tuple

import docker

from ..errors import (
    CommandExecutionError, ConfigurationError, ToolMissingError, TransientBackendError
)
from ..utils.docker_exec import exec_command, get_container

DEFAULT_INSTALL_COMMANDS = [
    ["apt-get", "update"],
    ["apt-get", "-y", "install", "iptables"],
]


class TrafficController:
    """Blocks and unblocks peer traffic for individual node containers"""

    def __init__(self, docker_client: docker.DockerClient, network_name: str,
                 install_commands: Optional[List[List[str]]] = None,
                 logger: Optional[logging.Logger] = None):
        self.client = docker_client
        self.network_name = network_name
        self.install_commands = install_commands or DEFAULT_INSTALL_COMMANDS
        self.logger = logger or logging.getLogger(__name__)

    def resolve_network(self) -> Tuple[str, str]:
        """Return (gateway address, node address range) of the shared network"""
        try:
            network = self.client.networks.get(self.network_name)
        except docker.errors.NotFound as e:
            raise ConfigurationError(f"network {self.network_name} does not exist") from e
        except docker.errors.APIError as e:
            raise TransientBackendError(f"failed to inspect network {self.network_name}: {e}") from e

        ipam_configs = (network.attrs.get("IPAM") or {}).get("Config") or []
        if len(ipam_configs) != 1:
            raise ConfigurationError(
                f"network {self.network_name} has {len(ipam_configs)} ipam configs, cannot identify node subnet"
            )

        ipam_config = ipam_configs[0]
        gateway_ip = ipam_config.get("Gateway", "")
        # an explicit allocation range is narrower than the subnet and preferred
        ip_range = ipam_config.get("IPRange") or ipam_config.get("Subnet", "")

        if not gateway_ip or not ip_range:
            raise ConfigurationError(f"failed to identify subnet or gateway ip of network {self.network_name}")

        return gateway_ip, ip_range

    def build_rules(self, blocked: bool, gateway_ip: str, ip_range: str) -> List[List[str]]:
        """
        Build the iptables invocations for the requested state.

        The rule set is always flushed first. Each -I inserts at the head of
        the INPUT chain, so the gateway ACCEPT added last is evaluated before
        the subnet-wide DROP.
        """
        rules = [["-F"]]
        if blocked:
            rules.append(["-I", "INPUT", "-s", ip_range, "-j", "DROP"])
            rules.append(["-I", "INPUT", "-s", gateway_ip, "-j", "ACCEPT"])
        return rules

    def set_traffic_control(self, resource_id: str, blocked: bool) -> None:
        """Block (or unblock) inbound peer traffic for a node"""
        self.logger.debug(f"Setting up traffic control on {resource_id[:12]}: blocked={blocked}")

        gateway_ip, ip_range = self.resolve_network()
        container = get_container(self.client, resource_id)
        rules = self.build_rules(blocked, gateway_ip, ip_range)

        try:
            self._apply_rules(container, rules)
        except CommandExecutionError as e:
            if not e.tool_missing:
                raise
            self.logger.debug(f"iptables unavailable in {resource_id[:12]}, attempting to install")
            self._install_iptables(container)
            try:
                self._apply_rules(container, rules)
            except CommandExecutionError as retry_error:
                if retry_error.tool_missing:
                    raise ToolMissingError("iptables still unavailable after install", resource_id) from retry_error
                raise

        try:
            exec_command(container, ["iptables", "-S"], self.logger)
        except CommandExecutionError as e:
            self.logger.debug(f"Failed to print iptables state: {e}")

        self.logger.info(f"Traffic control on {resource_id[:12]} set to {'blocked' if blocked else 'allowed'}")

    def _apply_rules(self, container, rules: List[List[str]]) -> None:
        for args in rules:
            exec_command(container, ["iptables"] + args, self.logger)

    def _install_iptables(self, container) -> None:
        for cmd in self.install_commands:
            try:
                exec_command(container, cmd, self.logger)
            except CommandExecutionError as e:
                raise ToolMissingError(f"failed to install iptables: {e}", container.id) from e
