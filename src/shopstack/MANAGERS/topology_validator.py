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
Validation of a deployment topology against its invariants.
"""
import logging
import re
from typing import List, Tuple, Type

from ..MODELS.orchestration_config import OrchestrationConfig
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..exceptions import (
    CircularDependencyError,
    NetworkAddressError,
    PortConflictError,
    TopologyError,
    UnknownServiceError,
)
from .volume_manager import VolumeManager

log = logging.getLogger(__name__)

_HOSTNAME = re.compile(r'^[a-z0-9]([a-z0-9_-]{0,61}[a-z0-9])?$', re.IGNORECASE)

Problem = Tuple[Type[TopologyError], str]


class TopologyValidator:
    """
    Checks a topology and raises one error listing every problem found.

    The error is the specific subclass (e.g. PortConflictError) when all
    problems are of one kind, TopologyError otherwise.
    """

    def __init__(self, base_dir: str = "."):
        self.resolver = DependencyResolver()
        self.volume_manager = VolumeManager(base_dir)

    def validate(self, config: OrchestrationConfig) -> None:
        problems = self.problems(config)
        if not problems:
            return
        kinds = {cls for cls, _ in problems}
        cls = kinds.pop() if len(kinds) == 1 else TopologyError
        raise cls([msg for _, msg in problems])

    def problems(self, config: OrchestrationConfig) -> List[Problem]:
        problems: List[Problem] = []
        problems += self._check_services(config)
        problems += self._check_ports(config)
        problems += self._check_dependencies(config)
        problems += self._check_networks(config)
        self._warn_shared_writers(config)
        return problems

    def _check_services(self, config: OrchestrationConfig) -> List[Problem]:
        problems = []
        seen_containers = {}
        for name, svc in config.services.items():
            if not _HOSTNAME.match(name):
                problems.append((TopologyError, f"service name {name!r} is not a valid hostname"))
            if not svc.image and svc.build is None:
                problems.append((TopologyError, f"{name} has neither an image nor a build context"))
            if svc.container_name:
                other = seen_containers.setdefault(svc.container_name, name)
                if other != name:
                    problems.append((TopologyError, f"{name} and {other} share container name {svc.container_name}"))
                if svc.replicas > 1:
                    problems.append((TopologyError, f"{name} sets a container name and cannot run {svc.replicas} replicas"))
            hc = svc.health_check
            if hc and not hc.disabled:
                if hc.interval <= 0 or hc.timeout <= 0:
                    problems.append((TopologyError, f"{name} health check needs a positive interval and timeout"))
                if hc.retries < 1:
                    problems.append((TopologyError, f"{name} health check needs at least one retry"))
                if hc.start_period < 0:
                    problems.append((TopologyError, f"{name} health check start period is negative"))
        return problems

    def _check_ports(self, config: OrchestrationConfig) -> List[Problem]:
        problems = []
        owners = {}
        for name, svc in config.services.items():
            for port in svc.ports:
                key = (port.host, port.protocol)
                if key in owners:
                    problems.append((PortConflictError, f"host port {port.host}/{port.protocol} is bound by both {owners[key]} and {name}"))
                else:
                    owners[key] = name
                if svc.replicas > 1:
                    problems.append((PortConflictError, f"{name} publishes host port {port.host} and cannot run {svc.replicas} replicas"))
        return problems

    def _check_dependencies(self, config: OrchestrationConfig) -> List[Problem]:
        try:
            self.resolver.resolve_order(config)
        except (UnknownServiceError, CircularDependencyError) as e:
            return [(type(e), msg) for msg in e.problems]

        problems = []
        for name, svc in config.services.items():
            for dep in svc.depends_on:
                shared = set(svc.networks) & set(config.services[dep].networks)
                if config.networks and not shared:
                    problems.append((TopologyError, f"{name} depends on {dep} but they share no network, {dep} is unreachable by name"))
        return problems

    def _check_networks(self, config: OrchestrationConfig) -> List[Problem]:
        problems = []
        for name, svc in config.services.items():
            for net in svc.networks:
                if net not in config.networks:
                    problems.append((TopologyError, f"{name} joins undeclared network {net}"))
        for net_name, network in config.networks.items():
            if network.driver != "bridge":
                problems.append((TopologyError, f"network {net_name} uses driver {network.driver}, expected bridge"))
            if network.ipam:
                problems += [(NetworkAddressError, f"{net_name}: {p}") for p in network.ipam.check()]
            if not config.members(net_name):
                log.warning("Network %s has no member services", net_name)
        return problems

    def _warn_shared_writers(self, config: OrchestrationConfig) -> None:
        for path, writers in self.volume_manager.shared_writers(list(config.services.values())).items():
            log.warning(
                "%s is written by %d containers (%s) without any locking",
                path, len(writers), ", ".join(sorted(set(writers))),
            )
