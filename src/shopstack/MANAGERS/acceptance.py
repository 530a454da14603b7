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
Deployment acceptance checks for a running stack.
"""
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.request import urlopen

from ..BLUEPRINTS import ecommerce
from ..exceptions import (
    AcceptanceCheckError,
    EngineCommandError,
    PortConflictError,
    ReadinessTimeoutError,
    TopologyError,
)
from .health_monitor import HealthStatus
from .service_orchestrator import ServiceOrchestrator

log = logging.getLogger(__name__)

INVALID_DATABASE_URI = "mongodb://invalid.invalid:1/unreachable"


@dataclass
class CheckResult:
    """Outcome of one acceptance check."""

    name: str
    passed: bool
    detail: str = ""


def http_get(url: str, timeout: float = 10.0) -> bytes:
    """
    Fetches a URL and returns its body.

    :raises AcceptanceCheckError: On connection errors or non-success statuses.
    """
    try:
        with urlopen(url, timeout=timeout) as response:
            return response.read()
    except HTTPError as e:
        raise AcceptanceCheckError(f"GET {url} returned {e.code}") from e
    except URLError as e:
        raise AcceptanceCheckError(f"GET {url} failed: {e.reason}") from e


class AcceptanceSuite:
    """
    Runs the deployment acceptance checks against an orchestrated stack.
    """

    def __init__(
        self,
        orchestrator: ServiceOrchestrator,
        fetch: Callable[[str], bytes] = http_get,
    ):
        """
        :param orchestrator: Orchestrator of a stack that is already up.
        :param fetch: Function returning the body of a URL.
        """
        self.orchestrator = orchestrator
        self.fetch = fetch

    @property
    def config(self):
        return self.orchestrator.config

    def _static_url(self) -> str:
        host_port = self.orchestrator.network_manager.get_host_port(
            ecommerce.STATIC_SERVICE, ecommerce.STATIC_PORT
        )
        if host_port is None:
            raise AcceptanceCheckError(f"{ecommerce.STATIC_SERVICE} publishes no port for {ecommerce.STATIC_PORT}")
        return f"http://localhost:{host_port}"

    def check_all_healthy(self) -> CheckResult:
        """Every service reaches healthy within its grace period plus retry budget."""
        failures = []
        for name in self.orchestrator.resolver.resolve_order(self.config):
            try:
                self.orchestrator.wait_until_healthy(name)
            except ReadinessTimeoutError as e:
                failures.append(str(e))
        return CheckResult("all_healthy", not failures, "; ".join(failures) or "all services healthy")

    def check_spa_fallback(self, base_url: Optional[str] = None, paths: Optional[List[str]] = None) -> CheckResult:
        """Undefined paths return the root document."""
        paths = paths or [f"/{uuid.uuid4().hex}", f"/products/{uuid.uuid4().hex}", "/cart/checkout"]
        try:
            base_url = (base_url or self._static_url()).rstrip("/")
            root = self.fetch(base_url + "/")
            mismatched = [p for p in paths if self.fetch(base_url + p) != root]
        except AcceptanceCheckError as e:
            return CheckResult("spa_fallback", False, str(e))
        if mismatched:
            return CheckResult("spa_fallback", False, f"paths not served the root document: {', '.join(mismatched)}")
        return CheckResult("spa_fallback", True, f"{len(paths)} undefined path(s) served the root document")

    def check_upload_persistence(self) -> CheckResult:
        """A file in the host upload directory survives recreation of the API container."""
        svc = self.config.services[ecommerce.API_SERVICE]
        try:
            host_dir = self.orchestrator.volume_manager.host_path(svc, ecommerce.UPLOADS_CONTAINER_PATH)
        except KeyError as e:
            return CheckResult("upload_persistence", False, str(e))

        os.makedirs(host_dir, exist_ok=True)
        marker = os.path.join(host_dir, f".acceptance-{uuid.uuid4().hex}")
        with open(marker, "w") as f:
            f.write("marker")
        try:
            self.orchestrator.recreate(ecommerce.API_SERVICE)
            survived = os.path.exists(marker)
        finally:
            if os.path.exists(marker):
                os.remove(marker)
        detail = "upload survived recreation" if survived else f"{marker} vanished after recreation"
        return CheckResult("upload_persistence", survived, detail)

    def check_port_collision_rejected(self) -> CheckResult:
        """A topology with two services on one host port is rejected."""
        clashing = self.config.model_copy(deep=True)
        api = clashing.services[ecommerce.API_SERVICE]
        static = clashing.services[ecommerce.STATIC_SERVICE]
        static.ports[0].host = api.ports[0].host
        try:
            self.orchestrator.validator.validate(clashing)
        except PortConflictError as e:
            return CheckResult("port_collision_rejected", True, str(e))
        except TopologyError as e:
            return CheckResult("port_collision_rejected", False, f"rejected for another reason: {e}")
        return CheckResult("port_collision_rejected", False, "colliding host ports were accepted")

    def check_invalid_database_fails(self) -> CheckResult:
        """
        With an unreachable database the API probe fails and the monitor
        restarts the API. The configured URI is restored afterwards.
        """
        name = ecommerce.API_SERVICE
        svc = self.config.services[name]
        hc = svc.health_check
        if hc is None or hc.disabled:
            return CheckResult("invalid_database_fails", False, f"{name} has no health probe")

        monitor = self.orchestrator.health_monitor
        container = self.orchestrator.container(name)
        status = HealthStatus.STARTING
        restarts = 0
        try:
            self.orchestrator.recreate(name, {"MONGODB_URI": INVALID_DATABASE_URI})
            self.orchestrator.sleep(hc.start_period)
            # one pass per probe needed to exhaust the retries, plus the one that restarts
            for attempt in range(hc.retries + 1):
                if attempt:
                    self.orchestrator.sleep(hc.interval)
                monitor.check_once()
                health = monitor.get_health(name)
                restarts = health.restart_count
                if restarts:
                    status = HealthStatus.UNHEALTHY
                    break
                status = health.status
            running = self.orchestrator.engine.inspect(container).running
        except EngineCommandError as e:
            return CheckResult("invalid_database_fails", False, str(e))
        finally:
            self.orchestrator.recreate(name)

        if status != HealthStatus.UNHEALTHY:
            return CheckResult("invalid_database_fails", False, f"probe stayed {status.value} with an invalid database")
        if not restarts:
            return CheckResult(
                "invalid_database_fails", False,
                f"probe failed but {name} was not restarted "
                f"(restart policy {svc.restart_policy.condition.value})",
            )
        if not running:
            return CheckResult("invalid_database_fails", False, f"{name} was restarted but is not running")
        return CheckResult("invalid_database_fails", True, f"probe failed and {name} was restarted")

    def check_network_recreate_keeps_ports(self) -> CheckResult:
        """Host port bindings are unchanged after the network is torn down and recreated."""
        engine = self.orchestrator.engine
        names = list(self.config.services)
        before: Dict[str, Dict[int, int]] = {n: engine.port_bindings(self.orchestrator.container(n)) for n in names}
        self.orchestrator.down()
        self.orchestrator.up()
        after = {n: engine.port_bindings(self.orchestrator.container(n)) for n in names}
        changed = [n for n in names if before[n] != after[n]]
        declared = {n: dict(self.orchestrator.network_manager.service_ports.get(n, {})) for n in names}
        drifted = [n for n in names if after[n] != declared[n]]
        if changed or drifted:
            return CheckResult(
                "network_recreate_keeps_ports", False,
                f"changed: {', '.join(changed) or '-'}; differs from manifest: {', '.join(drifted) or '-'}",
            )
        return CheckResult("network_recreate_keeps_ports", True, "port bindings unchanged")

    def run(self, base_url: Optional[str] = None) -> List[CheckResult]:
        results = [
            self.check_all_healthy(),
            self.check_spa_fallback(base_url),
            self.check_upload_persistence(),
            self.check_port_collision_rejected(),
            self.check_invalid_database_fails(),
            self.check_network_recreate_keeps_ports(),
        ]
        for r in results:
            log.info("%s: %s (%s)", r.name, "passed" if r.passed else "FAILED", r.detail)
        return results
