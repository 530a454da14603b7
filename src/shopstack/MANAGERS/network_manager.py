# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Network management for services, handling address allocation, name-based
discovery and host port reservation.
"""
import ipaddress
import logging
from typing import Dict, Iterable, List, Optional, Tuple
from ..UTILS.port_finder import is_port_free, listening_ports
from ..MODELS.orchestration_config import OrchestrationConfig
from ..MODELS.network_definition import NetworkDefinition
from ..MODELS.service_definition import ServiceDefinition
from ..exceptions import NetworkAddressError, PortConflictError

log = logging.getLogger(__name__)


class NetworkManager:
    """
    Manages network-related aspects like port mapping and service discovery.
    """
    def __init__(self):
        self.service_ports: Dict[str, Dict[int, int]] = {}  # service_name -> {container_port: host_port}
        self.host_port_to_service: Dict[Tuple[int, str], str] = {}  # (host_port, protocol) -> service_name
        self.dns_entries: Dict[str, Dict[str, str]] = {}  # network -> {hostname: address}

    def reserve_ports(self, service_def: ServiceDefinition) -> Dict[int, int]:
        """
        Reserves the static host ports of a service.

        :param service_def: The service definition.
        :return: Mapping from container port to host port.
        :raises PortConflictError: If another service already holds one of the host ports.
        """
        conflicts = []
        for port in service_def.ports:
            owner = self.host_port_to_service.get((port.host, port.protocol))
            if owner is not None and owner != service_def.name:
                conflicts.append(f"host port {port.host}/{port.protocol} of {service_def.name} is already bound by {owner}")
        if conflicts:
            raise PortConflictError(conflicts)

        mappings = {}
        for port in service_def.ports:
            mappings[port.container] = port.host
            self.host_port_to_service[(port.host, port.protocol)] = service_def.name
        self.service_ports[service_def.name] = mappings
        return mappings

    def check_host(self, config: OrchestrationConfig, skip: Iterable[str] = ()) -> None:
        """
        Rejects host ports already listened on by some other process.

        :param config: The topology.
        :param skip: Services whose ports are held by their own running container.
        :raises PortConflictError: Listing every occupied port.
        """
        skip = set(skip)
        busy = listening_ports()

        def in_use(port: int) -> bool:
            if busy is None:
                return not is_port_free(port)
            return port in busy

        conflicts = [
            f"host port {port.host} of {name} is already in use on this host"
            for name, svc in config.services.items()
            if name not in skip
            for port in svc.ports
            if port.protocol == "tcp" and in_use(port.host)
        ]
        if conflicts:
            raise PortConflictError(conflicts)

    def allocate_addresses(self, network: NetworkDefinition, members: List[str]) -> Dict[str, str]:
        """
        Assigns each member an address from the network's allocatable range,
        skipping the gateway, and records it under the member's name.

        :param network: The network definition.
        :param members: Names of the attached services, in start order.
        :return: {service_name: address}
        :raises NetworkAddressError: If the range is exhausted or misconfigured.
        """
        table: Dict[str, str] = {}
        if network.ipam is None:
            self.dns_entries[network.name] = table
            return table

        network.ipam.validate_addresses()
        pool = ipaddress.ip_network(network.ipam.ip_range or network.ipam.subnet)
        gateway = ipaddress.ip_address(network.ipam.gateway) if network.ipam.gateway else None

        hosts = (h for h in pool.hosts() if h != gateway)
        for name in members:
            address = next(hosts, None)
            if address is None:
                raise NetworkAddressError([f"address range {pool} of {network.name} is exhausted"])
            table[name] = str(address)
        self.dns_entries[network.name] = table
        log.debug("Addresses on %s: %s", network.name, table)
        return table

    def plan(self, config: OrchestrationConfig, order: List[str]) -> None:
        """
        Reserves every host port and allocates every address of a topology.
        """
        self.cleanup()
        for name in order:
            self.reserve_ports(config.services[name])
        for net_name, network in config.networks.items():
            members = [n for n in order if net_name in config.services[n].networks]
            self.allocate_addresses(network, members)

    def resolve_hostname(self, hostname: str, network: Optional[str] = None) -> Optional[str]:
        """
        Resolves a service name to its address on a network (any network when unset).
        """
        for net_name, table in self.dns_entries.items():
            if network is None or net_name == network:
                if hostname in table:
                    return table[hostname]
        return None

    def get_host_port(self, service_name: str, container_port: int) -> Optional[int]:
        """
        Returns the host port for a given service and container port.
        """
        return self.service_ports.get(service_name, {}).get(container_port)

    def cleanup(self) -> None:
        self.service_ports.clear()
        self.host_port_to_service.clear()
        self.dns_entries.clear()
