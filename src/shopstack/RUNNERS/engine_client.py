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
Container engine clients.

The deployment itself is carried out by a container engine; these clients
translate the orchestrator's requests into engine commands.
"""
import json
import logging
import os
import re
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import yaml

from ..MODELS.service_definition import ServiceDefinition
from ..UTILS.string_interpolation import EnvironmentInterpolator
from ..exceptions import EngineCommandError

log = logging.getLogger(__name__)


@dataclass
class ContainerState:
    """Engine view of one container."""

    status: str = "missing"  # created, running, exited, missing
    exit_code: Optional[int] = None
    health: Optional[str] = None  # starting, healthy, unhealthy or None without a probe

    @property
    def running(self) -> bool:
        return self.status == "running"


@dataclass
class ProbeResult:
    """Outcome of one health probe execution."""

    success: bool
    output: str = ""


def container_name(project: str, service: ServiceDefinition) -> str:
    """Name of the (single) container backing ``service``."""
    return service.container_name or f"{project}-{service.name}-1"


class EngineClient(ABC):
    """
    Operations the orchestrator needs from a container engine.
    """

    @abstractmethod
    def build(self, compose_file: str, services: List[str]) -> None:
        """Builds the images of services that have a build context."""

    @abstractmethod
    def up(self, compose_file: str, service: ServiceDefinition) -> None:
        """Creates and starts the container of one service, without its dependencies."""

    @abstractmethod
    def recreate(
        self,
        compose_file: str,
        service: ServiceDefinition,
        environment: Optional[Dict[str, str]] = None,
    ) -> None:
        """Replaces the container of a service, optionally overriding environment values."""

    @abstractmethod
    def stop(self, container: str) -> None:
        """Stops a container explicitly."""

    @abstractmethod
    def restart(self, container: str) -> None:
        """Restarts a container."""

    @abstractmethod
    def down(self, compose_file: str) -> None:
        """Removes the containers and networks of the project. Bind-mounted data stays."""

    @abstractmethod
    def inspect(self, container: str) -> ContainerState:
        """Current state of a container."""

    @abstractmethod
    def exec_probe(self, container: str, test: List[str], timeout: float) -> ProbeResult:
        """Runs a health probe command inside a container."""

    @abstractmethod
    def port_bindings(self, container: str) -> Dict[int, int]:
        """Published ports of a container as {container_port: host_port}."""


class DockerEngineClient(EngineClient):
    """
    Drives the ``docker`` command line.
    """

    def __init__(
        self,
        project: str,
        executable: str = "docker",
        project_dir: Optional[str] = None,
        environment: Optional[Dict[str, str]] = None,
    ):
        """
        :param project: Compose project name.
        :param executable: Path or name of the docker binary.
        :param project_dir: Directory relative paths in the manifest are
            resolved against, the manifest's own directory by default.
        :param environment: Values for the manifest's ${VAR} references,
            added to the inherited environment of compose commands.
        """
        self.project = project
        self.executable = executable
        self.project_dir = project_dir
        self.environment = dict(environment or {})

    def _compose(self, *files: str) -> List[str]:
        cmd = [self.executable, "compose", "-p", self.project]
        if self.project_dir:
            cmd += ["--project-directory", self.project_dir]
        for f in files:
            cmd += ["-f", f]
        return cmd

    def _run(self, cmd: List[str], timeout: Optional[float] = None) -> str:
        log.debug("Running: %s", " ".join(cmd))
        env = None
        if self.environment:
            env = dict(os.environ)
            env.update(self.environment)
        proc = subprocess.run(
            cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True, timeout=timeout, env=env,
        )
        if proc.returncode != 0:
            raise EngineCommandError(cmd, proc.returncode, proc.stdout)
        if proc.stdout.strip():
            log.debug(proc.stdout.strip())
        return proc.stdout

    def build(self, compose_file: str, services: List[str]) -> None:
        if services:
            self._run(self._compose(compose_file) + ["build"] + list(services))

    def up(self, compose_file: str, service: ServiceDefinition) -> None:
        self._run(self._compose(compose_file) + ["up", "-d", "--no-deps", service.name])

    def recreate(self, compose_file, service, environment=None):
        if not environment:
            self._run(self._compose(compose_file)
                      + ["up", "-d", "--no-deps", "--force-recreate", service.name])
            return
        with tempfile.NamedTemporaryFile("w", suffix=".override.yml", delete=False) as tf:
            escaped = {k: EnvironmentInterpolator.escape(v) for k, v in environment.items()}
            yaml.safe_dump({"services": {service.name: {"environment": escaped}}}, tf)
        try:
            self._run(self._compose(compose_file, tf.name)
                      + ["up", "-d", "--no-deps", "--force-recreate", service.name])
        finally:
            os.unlink(tf.name)

    def stop(self, container: str) -> None:
        self._run([self.executable, "stop", container])

    def restart(self, container: str) -> None:
        self._run([self.executable, "restart", container])

    def down(self, compose_file: str) -> None:
        self._run(self._compose(compose_file) + ["down"])

    def inspect(self, container: str) -> ContainerState:
        proc = subprocess.run(
            [self.executable, "inspect", "--format", "{{json .State}}", container],
            capture_output=True, text=True,
        )
        if proc.returncode != 0:
            return ContainerState()
        state = json.loads(proc.stdout)
        health = state.get("Health") or {}
        return ContainerState(
            status=state.get("Status", "missing"),
            exit_code=state.get("ExitCode"),
            health=health.get("Status"),
        )

    def exec_probe(self, container: str, test: List[str], timeout: float) -> ProbeResult:
        if not test or test[0] == "NONE":
            return ProbeResult(success=True)
        if test[0] == "CMD-SHELL":
            argv = ["sh", "-c", test[1] if len(test) > 1 else ""]
        elif test[0] == "CMD":
            argv = list(test[1:])
        else:
            argv = list(test)
        cmd = [self.executable, "exec", container] + argv
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired:
            return ProbeResult(success=False, output="Health check timed out")
        if proc.returncode == 0:
            return ProbeResult(success=True, output=proc.stdout[:500])
        return ProbeResult(
            success=False,
            output=proc.stderr[:500] if proc.stderr else f"Exit code: {proc.returncode}",
        )

    def port_bindings(self, container: str) -> Dict[int, int]:
        # lines look like "5000/tcp -> 0.0.0.0:8080"
        out = self._run([self.executable, "port", container])
        bindings = {}
        for line in out.splitlines():
            match = re.match(r'(\d+)/\w+\s*->\s*.*:(\d+)$', line.strip())
            if match:
                bindings[int(match.group(1))] = int(match.group(2))
        return bindings


@dataclass
class MockContainer:
    service: ServiceDefinition
    status: str = "running"
    exit_code: Optional[int] = None
    environment: Dict[str, str] = field(default_factory=dict)
    starts: int = 1


class MockEngineClient(EngineClient):
    """
    In-memory engine used by tests and dry runs.

    Probes succeed unless ``probe`` says otherwise; ``probe`` receives the
    service name and the container's effective environment.
    """

    def __init__(self, project: str, probe: Optional[Callable[[str, Dict[str, str]], bool]] = None):
        self.project = project
        self.probe = probe or (lambda name, env: True)
        self.containers: Dict[str, MockContainer] = {}
        self.calls: List[tuple] = []
        self.built: List[str] = []

    def _find(self, container: str) -> Optional[MockContainer]:
        return self.containers.get(container)

    def build(self, compose_file, services):
        self.calls.append(("build", tuple(services)))
        self.built.extend(services)

    def up(self, compose_file, service):
        self.calls.append(("up", service.name))
        name = container_name(self.project, service)
        if name in self.containers and self.containers[name].status == "running":
            return
        taken = {
            p.host: c.service.name
            for cname, c in self.containers.items()
            if cname != name and c.status == "running"
            for p in c.service.ports
        }
        for port in service.ports:
            if port.host in taken:
                raise EngineCommandError(
                    ["up", service.name], 1,
                    f"Bind for 0.0.0.0:{port.host} failed: port is already allocated",
                )
        self.containers[name] = MockContainer(service=service, environment=dict(service.environment))

    def recreate(self, compose_file, service, environment=None):
        self.calls.append(("recreate", service.name))
        name = container_name(self.project, service)
        env = dict(service.environment)
        env.update(environment or {})
        self.containers[name] = MockContainer(service=service, environment=env)

    def stop(self, container):
        self.calls.append(("stop", container))
        c = self._find(container)
        if c:
            c.status = "exited"
            c.exit_code = 0

    def restart(self, container):
        self.calls.append(("restart", container))
        c = self._find(container)
        if c:
            c.status = "running"
            c.exit_code = None
            c.starts += 1

    def down(self, compose_file):
        self.calls.append(("down",))
        self.containers.clear()

    def kill(self, container: str, exit_code: int = 1) -> None:
        """Simulates a container exiting on its own."""
        c = self.containers[container]
        c.status = "exited"
        c.exit_code = exit_code

    def inspect(self, container):
        c = self._find(container)
        if c is None:
            return ContainerState()
        health = None
        hc = c.service.health_check
        if hc and not hc.disabled and c.status == "running":
            health = "healthy" if self.probe(c.service.name, c.environment) else "unhealthy"
        return ContainerState(status=c.status, exit_code=c.exit_code, health=health)

    def exec_probe(self, container, test, timeout):
        c = self._find(container)
        if c is None or c.status != "running":
            return ProbeResult(success=False, output=f"container {container} is not running")
        ok = self.probe(c.service.name, c.environment)
        return ProbeResult(success=ok, output="" if ok else "probe failed")

    def port_bindings(self, container):
        c = self._find(container)
        if c is None:
            return {}
        return {p.container: p.host for p in c.service.ports}
