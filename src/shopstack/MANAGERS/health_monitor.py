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
Health monitoring for services, including probe evaluation and restart
policy management with exponential backoff.
"""
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional

from ..MODELS.service_definition import HealthCheck, ServiceDefinition
from ..RUNNERS.engine_client import EngineClient, container_name
from ..exceptions import EngineCommandError
from .lifecycle import ServiceLifecycle, ServiceState, restart_allowed

log = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health status of a service."""

    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    NONE = "none"  # No health check configured


@dataclass
class ServiceHealth:
    """Health information for a service."""

    status: HealthStatus = HealthStatus.NONE
    failing_streak: int = 0
    last_check: Optional[str] = None
    last_output: str = ""
    restart_count: int = 0
    last_restart: Optional[str] = None


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ProbeTracker:
    """
    Turns a stream of probe results into a health status.

    During the start period failures are not counted and the first success
    ends the grace period. Afterwards ``retries`` consecutive failures mark
    the service unhealthy; a single success marks it healthy again.
    """

    def __init__(self, health_check: HealthCheck, started_at: float):
        self.health_check = health_check
        self.started_at = started_at
        self.status = HealthStatus.STARTING
        self.failing_streak = 0
        self.last_probe: Optional[float] = None

    def in_grace_period(self, now: float) -> bool:
        return (
            self.status == HealthStatus.STARTING
            and now - self.started_at < self.health_check.start_period
        )

    def due(self, now: float) -> bool:
        """The next probe is due one interval after the previous one."""
        if self.last_probe is None:
            return True
        return now - self.last_probe >= self.health_check.interval

    def record(self, success: bool, now: float) -> HealthStatus:
        self.last_probe = now
        if success:
            self.failing_streak = 0
            self.status = HealthStatus.HEALTHY
            return self.status

        if self.in_grace_period(now):
            return self.status

        self.failing_streak += 1
        if self.failing_streak >= self.health_check.retries:
            self.status = HealthStatus.UNHEALTHY
        return self.status


class HealthMonitor:
    """
    Monitors the health of services and applies their restart policy.

    Each service is probed on its own interval. A failing service is
    restarted according to its own policy only; its dependents are left
    alone.
    """

    def __init__(
        self,
        engine: EngineClient,
        project: str,
        services: Dict[str, ServiceDefinition],
        lifecycles: Optional[Dict[str, ServiceLifecycle]] = None,
        interval: float = 1.0,
        on_failure: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initializes the health monitor.

        :param engine: Engine used to inspect, probe and restart containers.
        :param project: Compose project name, used to derive container names.
        :param services: Services to monitor.
        :param lifecycles: Lifecycle trackers shared with the orchestrator.
        :param interval: Seconds between monitoring passes.
        :param on_failure: Callback when a service becomes unhealthy or exits.
        :param clock: Monotonic time source.
        """
        self.engine = engine
        self.project = project
        self.services = services
        self.interval = interval
        self.on_failure = on_failure
        self.clock = clock
        self.running = False
        self.thread = None
        self._stop_event = threading.Event()
        # held for a whole monitoring pass; the orchestrator takes it to replace containers
        self.lock = threading.RLock()

        self.lifecycles = lifecycles if lifecycles is not None else {
            name: ServiceLifecycle(name) for name in services
        }
        self._health: Dict[str, ServiceHealth] = {name: ServiceHealth() for name in services}
        self._trackers: Dict[str, ProbeTracker] = {}

        # Restart backoff tracking
        self._restart_delays: Dict[str, float] = {}
        self._restart_not_before: Dict[str, float] = {}
        self._max_restart_delay = 300  # 5 minutes max

    def start(self):
        """
        Starts the health monitoring thread.
        """
        self.running = True
        self._stop_event.clear()
        self.thread = threading.Thread(target=self._monitor_loop, daemon=True)
        self.thread.start()

    def stop(self):
        """
        Stops the health monitoring thread, waiting for a pass in progress
        (probe or restart included) to finish.
        """
        self.running = False
        self._stop_event.set()
        if self.thread and self.thread is not threading.current_thread():
            self.thread.join()
        self.thread = None

    def get_health(self, service_name: str) -> ServiceHealth:
        return self._health.get(service_name, ServiceHealth())

    def get_all_health(self) -> Dict[str, ServiceHealth]:
        """Get health status of all services."""
        return self._health.copy()

    def track(self, name: str) -> None:
        """
        (Re)starts probe tracking for a service that has just been started.
        """
        hc = self.services[name].health_check
        if hc and not hc.disabled:
            self._trackers[name] = ProbeTracker(hc, self.clock())
            self._health[name].status = HealthStatus.STARTING
        else:
            self._trackers.pop(name, None)
            self._health[name].status = HealthStatus.NONE
        self._health[name].failing_streak = 0

    def _monitor_loop(self):
        while self.running:
            self.check_once()
            self._stop_event.wait(self.interval)

    def check_once(self) -> None:
        """
        One monitoring pass over every service.
        """
        with self.lock:
            self._check_all(self.clock())

    def _check_all(self, now: float) -> None:
        for name, svc in self.services.items():
            lifecycle = self.lifecycles[name]
            if lifecycle.state in (ServiceState.STOPPING, ServiceState.CREATED):
                continue
            if lifecycle.state == ServiceState.STOPPED and lifecycle.explicit_stop:
                continue

            health = self._health[name]
            container = container_name(self.project, svc)
            state = self.engine.inspect(container)

            if not state.running:
                if lifecycle.state != ServiceState.STOPPED:
                    lifecycle.exited(state.exit_code)
                    log.warning("Service %s exited with code %s", name, state.exit_code)
                    if self.on_failure:
                        self.on_failure(name)
                health.status = HealthStatus.UNHEALTHY
                if restart_allowed(svc.restart_policy, lifecycle.explicit_stop, state.exit_code):
                    self._handle_restart(name, now)
                continue

            if lifecycle.state == ServiceState.STOPPED:
                # brought back by the engine itself
                lifecycle.start()
                self.track(name)

            probed = svc.health_check is not None and not svc.health_check.disabled
            if probed and name not in self._trackers:
                self.track(name)
            if not probed:
                if lifecycle.state == ServiceState.STARTING:
                    lifecycle.transition(ServiceState.RUNNING)
                health.status = HealthStatus.NONE
                continue

            tracker = self._trackers[name]
            if not tracker.due(now):
                continue

            result = self.engine.exec_probe(container, svc.health_check.test, svc.health_check.timeout)
            previous = tracker.status
            status = tracker.record(result.success, now)

            health.last_check = _utc_now()
            health.last_output = result.output
            health.failing_streak = tracker.failing_streak
            health.status = status

            if status == HealthStatus.HEALTHY:
                lifecycle.transition(ServiceState.HEALTHY)
                self._restart_delays[name] = 0
            elif status == HealthStatus.UNHEALTHY:
                lifecycle.transition(ServiceState.UNHEALTHY)
                if previous != HealthStatus.UNHEALTHY:
                    log.warning("Service %s is unhealthy: %s", name, result.output.strip())
                    if self.on_failure:
                        self.on_failure(name)
                if restart_allowed(svc.restart_policy, lifecycle.explicit_stop, None):
                    self._handle_restart(name, now)

    def _handle_restart(self, name: str, now: float) -> None:
        """
        Restarts a service once its backoff delay has passed.
        """
        if now < self._restart_not_before.get(name, 0):
            return

        svc = self.services[name]
        policy = svc.restart_policy
        health = self._health[name]

        if policy.max_retries > 0 and health.restart_count >= policy.max_retries:
            log.error("Service %s exceeded max restart attempts (%d)", name, policy.max_retries)
            return

        base_delay = policy.delay if policy.delay > 0 else 1.0
        current_delay = self._restart_delays.get(name) or base_delay

        log.info("Restarting service %s (attempt %d)", name, health.restart_count + 1)
        try:
            self.engine.restart(container_name(self.project, svc))
        except EngineCommandError as e:
            log.error("Failed to restart %s: %s", name, e)
            self._restart_not_before[name] = now + current_delay
            self._restart_delays[name] = min(current_delay * 2, self._max_restart_delay)
            return
        self.lifecycles[name].start()

        health.restart_count += 1
        health.last_restart = _utc_now()
        self._restart_not_before[name] = now + current_delay
        self._restart_delays[name] = min(current_delay * 2, self._max_restart_delay)
        self.track(name)

    def reset_health(self, name: str) -> None:
        self._health[name] = ServiceHealth()
        self._restart_delays[name] = 0
        self._restart_not_before.pop(name, None)
        self.track(name)
