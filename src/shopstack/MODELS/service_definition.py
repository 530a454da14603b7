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
Models for defining services, including restart policies, health checks, and mounts.
"""
from typing import List, Dict, Optional
from pydantic import BaseModel, Field
from enum import Enum


class RestartPolicyCondition(str, Enum):
    """
    Conditions under which a service should be restarted.
    """
    NO = "no"
    ALWAYS = "always"
    ON_FAILURE = "on-failure"
    UNLESS_STOPPED = "unless-stopped"


class RestartPolicy(BaseModel):
    """
    Defines how a service should be restarted on failure or exit.
    """
    condition: RestartPolicyCondition = RestartPolicyCondition.NO
    max_retries: int = 0
    delay: float = 0.0


class HealthCheck(BaseModel):
    """
    Defines a command to run to check the health of a service.

    ``test`` uses the Docker forms ``["CMD", exe, args...]``,
    ``["CMD-SHELL", "command line"]`` or ``["NONE"]``.
    """
    test: List[str]
    interval: float = 30.0
    timeout: float = 30.0
    retries: int = 3
    start_period: float = 0.0

    @classmethod
    def command(cls, *argv: str, **kwargs) -> "HealthCheck":
        """Builds an exec-form probe, e.g. ``HealthCheck.command("redis-cli", "ping")``."""
        return cls(test=["CMD", *argv], **kwargs)

    @classmethod
    def http(cls, url: str, **kwargs) -> "HealthCheck":
        """Builds a probe that fails unless ``url`` answers with a success status."""
        return cls(test=["CMD", "curl", "-f", url], **kwargs)

    @property
    def disabled(self) -> bool:
        return not self.test or self.test[0] == "NONE"

    @property
    def budget(self) -> float:
        """
        Longest time a healthy service may take to be reported healthy:
        the grace period plus every retry at full interval and timeout.
        """
        return self.start_period + self.retries * (self.interval + self.timeout)


class PortMapping(BaseModel):
    """
    Publishes a container port on a host port.
    """
    host: int
    container: int
    protocol: str = "tcp"

    def __str__(self) -> str:
        suffix = "" if self.protocol == "tcp" else f"/{self.protocol}"
        return f"{self.host}:{self.container}{suffix}"


class VolumeMount(BaseModel):
    """
    Defines a mapping between a host path and a service path.

    ``type`` follows the Compose long syntax (bind, volume, tmpfs); when it
    is not given the kind is inferred from the source.
    """
    source: str = ""
    target: str
    read_only: bool = False
    type: Optional[str] = None

    @property
    def is_bind(self) -> bool:
        """True when the source is a host path rather than a named volume."""
        if self.type is not None:
            return self.type == "bind"
        return self.source.startswith(("/", ".", "~"))

    def __str__(self) -> str:
        return f"{self.source}:{self.target}{':ro' if self.read_only else ''}"


class BuildSpec(BaseModel):
    """
    Where and how a service image is built from source.
    """
    context: str
    dockerfile: str = "Dockerfile"
    args: Dict[str, str] = {}


class ServiceDefinition(BaseModel):
    """
    The full definition of a single service in the deployment.
    """
    name: str
    image: str
    build: Optional[BuildSpec] = None
    container_name: Optional[str] = None

    # Environment
    environment: Dict[str, str] = {}

    # Networking
    ports: List[PortMapping] = []
    networks: List[str] = []

    # Storage
    volumes: List[VolumeMount] = []

    # Lifecycle
    restart_policy: RestartPolicy = Field(default_factory=RestartPolicy)
    health_check: Optional[HealthCheck] = None
    depends_on: List[str] = []
    wait_healthy: bool = True
    replicas: int = 1

    # Metadata
    labels: Dict[str, str] = {}
    user: Optional[str] = None

    @property
    def host_ports(self) -> List[int]:
        return [p.host for p in self.ports]

    @property
    def bind_mounts(self) -> List[VolumeMount]:
        return [v for v in self.volumes if v.is_bind]
