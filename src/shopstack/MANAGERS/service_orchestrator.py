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
Orchestration for multiple services, managing dependencies and health.
"""
import logging
import time
from typing import Callable, Dict, Optional

from tenacity import (
    RetryError,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from ..MODELS.orchestration_config import OrchestrationConfig
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..RUNNERS.engine_client import ContainerState, EngineClient, container_name
from ..exceptions import ReadinessTimeoutError
from .health_monitor import HealthMonitor
from .lifecycle import ServiceLifecycle, ServiceState
from .network_manager import NetworkManager
from .topology_validator import TopologyValidator
from .volume_manager import VolumeManager

log = logging.getLogger(__name__)

# Budget used for dependencies that declare no health probe
_NO_PROBE_BUDGET = 30.0


class ServiceOrchestrator:
    """
    Orchestrates multiple services based on their dependencies.

    With ``wait_ready`` (the default) a service is started only after each
    of its dependencies reports healthy, polling with bounded exponential
    backoff. Without it, dependencies are only started first.
    """

    def __init__(
        self,
        config: OrchestrationConfig,
        engine: EngineClient,
        compose_file: str,
        base_dir: str = ".",
        wait_ready: bool = True,
        monitor: bool = False,
        check_host: bool = True,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initializes the orchestrator.

        :param config: Configuration for all services.
        :param engine: Container engine client.
        :param compose_file: Rendered compose file the engine works from.
        :param base_dir: Directory relative host paths are resolved against.
        :param wait_ready: Gate each start on dependency health.
        :param monitor: Run the background health monitor after ``up``.
        :param check_host: Refuse to start when another process holds a declared host port.
        :param sleep: Sleep function used between readiness polls.
        :param clock: Monotonic time source of the health monitor.
        """
        self.config = config
        self.engine = engine
        self.compose_file = compose_file
        self.base_dir = base_dir
        self.wait_ready = wait_ready
        self.monitor_enabled = monitor
        self.check_host = check_host
        self.sleep = sleep
        self.project = config.project_name

        self.resolver = DependencyResolver()
        self.validator = TopologyValidator(base_dir)
        self.network_manager = NetworkManager()
        self.volume_manager = VolumeManager(base_dir)
        self.lifecycles: Dict[str, ServiceLifecycle] = {
            name: ServiceLifecycle(name) for name in config.services
        }
        self.health_monitor = HealthMonitor(
            engine, self.project, config.services, self.lifecycles,
            on_failure=self._handle_service_failure, clock=clock,
        )

    def container(self, name: str) -> str:
        return container_name(self.project, self.config.services[name])

    def plan(self, check_host: bool = False):
        """
        Validates the topology and reserves its ports and addresses.

        :param check_host: Also reject host ports held by other processes.
            Ports of this project's running containers are not counted.
        :return: Service names in start order.
        :raises PortConflictError: If a declared host port is already taken.
        """
        self.validator.validate(self.config)
        order = self.resolver.resolve_order(self.config)
        self.network_manager.plan(self.config, order)
        if check_host:
            running = [n for n in order if self.engine.inspect(self.container(n)).running]
            self.network_manager.check_host(self.config, skip=running)
        return order

    def build(self) -> None:
        """Builds the images of every service with a build context."""
        to_build = [n for n, s in self.config.services.items() if s.build is not None]
        log.info("Building images for: %s", ", ".join(to_build) or "nothing")
        self.engine.build(self.compose_file, to_build)

    def up(self):
        """
        Starts all services in dependency order.
        """
        order = self.plan(check_host=self.check_host)
        log.info("Starting services in order: %s", ", ".join(order))

        for name in order:
            svc = self.config.services[name]
            if self.wait_ready and svc.wait_healthy:
                for dep in svc.depends_on:
                    self.wait_until_healthy(dep)

            for target, host in self.volume_manager.prepare_volumes(svc).items():
                log.debug("%s: %s mounted at %s", name, host, target)

            log.info("Starting service: %s", name)
            lifecycle = self.lifecycles[name]
            if lifecycle.state not in (ServiceState.CREATED, ServiceState.STOPPED):
                lifecycle.request_stop()
                lifecycle.exited(None)
            self.engine.up(self.compose_file, svc)
            lifecycle.start()
            self.health_monitor.track(name)

        if self.monitor_enabled:
            self.health_monitor.start()

    def _readiness(self, name: str) -> str:
        state: ContainerState = self.engine.inspect(self.container(name))
        if not state.running:
            return state.status
        return state.health or "running"

    def wait_until_healthy(self, name: str) -> None:
        """
        Waits for a service to report healthy (or, without a probe, running).

        The wait is bounded by the probe budget: start period plus every
        retry at full interval and timeout.

        :raises ReadinessTimeoutError: If the service is not ready in time.
        """
        svc = self.config.services[name]
        hc = svc.health_check
        probed = hc is not None and not hc.disabled
        target = "healthy" if probed else "running"
        budget = hc.budget if probed else _NO_PROBE_BUDGET
        interval = hc.interval if probed else 1.0
        attempts = int(budget // interval) + (hc.retries if probed else 0) + 1

        log.info("Waiting for %s to become %s", name, target)
        retrying = Retrying(
            stop=stop_after_delay(budget) | stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=interval),
            retry=retry_if_result(lambda status: status != target),
            sleep=self.sleep,
        )
        try:
            status = retrying(self._readiness, name)
        except RetryError as e:
            last = e.last_attempt.result() if not e.last_attempt.failed else "unknown"
            raise ReadinessTimeoutError(
                f"{name} did not become {target} within {budget:.0f}s (last status: {last})"
            ) from e

        lifecycle = self.lifecycles[name]
        if lifecycle.state == ServiceState.STARTING:
            lifecycle.transition(ServiceState.HEALTHY if probed else ServiceState.RUNNING)
        log.info("Service %s is %s", name, status)

    def down(self):
        """
        Stops all services in reverse dependency order and removes the
        containers and network. Bind-mounted host directories are kept.
        """
        self.health_monitor.stop()
        for name in self.resolver.stop_order(self.config):
            lifecycle = self.lifecycles[name]
            if lifecycle.state in (ServiceState.CREATED, ServiceState.STOPPED):
                continue
            log.info("Stopping service: %s", name)
            lifecycle.request_stop()
            self.engine.stop(self.container(name))
            lifecycle.exited(0)
        self.engine.down(self.compose_file)
        self.network_manager.cleanup()

    def recreate(self, name: str, environment: Optional[Dict[str, str]] = None) -> None:
        """
        Replaces the container of one service, optionally with overridden
        environment values. Its dependents are not touched.
        """
        svc = self.config.services[name]
        lifecycle = self.lifecycles[name]
        with self.health_monitor.lock:
            if lifecycle.state not in (ServiceState.CREATED, ServiceState.STOPPED):
                lifecycle.request_stop()
                lifecycle.exited(0)
            self.volume_manager.prepare_volumes(svc)
            log.info("Recreating service: %s", name)
            self.engine.recreate(self.compose_file, svc, environment)
            lifecycle.start()
            self.health_monitor.reset_health(name)

    def ps(self) -> Dict[str, str]:
        """
        Returns the status of all services.

        :return: Service names and their statuses.
        """
        return {name: self._readiness(name) for name in self.config.services}

    def _handle_service_failure(self, name: str):
        """
        Failures stay local to the service; dependents keep running.
        """
        dependents = self.resolver.dependents(self.config, name)
        if dependents:
            log.warning("Service %s failed; dependents %s keep running", name, ", ".join(dependents))
