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
Converter from a topology to a docker-compose.yml manifest.
"""
import re
from typing import Any, Dict, Optional

import yaml

from ..MODELS.orchestration_config import OrchestrationConfig
from ..MODELS.service_definition import HealthCheck, ServiceDefinition, VolumeMount
from ..UTILS.durations import format_duration
from ..UTILS.string_interpolation import EnvironmentInterpolator


class ComposeConverter:
    """
    Renders an OrchestrationConfig as Compose YAML.

    Values that came from externally supplied variables are written back as
    ``${VAR}`` references, so the manifest carries no deployment value of its
    own and the engine substitutes them at run time. Keys (service and network
    names) are never interpolated by Compose and stay literal.
    """

    def __init__(self, config: OrchestrationConfig, variables: Optional[Dict[str, str]] = None):
        """
        :param config: The topology, with every value resolved.
        :param variables: Variable names and the values they resolved to.
            Without it the manifest is written with literal values.
        """
        self.config = config
        # longest first so that a value containing another one wins
        self.variables = sorted(
            ((name, value) for name, value in (variables or {}).items() if value),
            key=lambda item: len(item[1]), reverse=True,
        )

    def to_dict(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {}
        if self.config.project_name:
            doc["name"] = self._ref(self.config.project_name)
        doc["services"] = {name: self._service(svc) for name, svc in self.config.services.items()}
        if self.config.networks:
            doc["networks"] = {}
            for name, net in self.config.networks.items():
                entry: Dict[str, Any] = {"driver": net.driver}
                if net.ipam:
                    ipam = {"subnet": self._ref(net.ipam.subnet)}
                    if net.ipam.ip_range:
                        ipam["ip_range"] = self._ref(net.ipam.ip_range)
                    if net.ipam.gateway:
                        ipam["gateway"] = self._ref(net.ipam.gateway)
                    entry["ipam"] = {"config": [ipam]}
                doc["networks"][name] = entry
        return doc

    def render(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)

    def write(self, path: str) -> str:
        with open(path, "w") as f:
            f.write(self.render())
        return path

    def _ref(self, value: str) -> str:
        """A value equal to a supplied variable becomes a reference to it."""
        for name, resolved in self.variables:
            if value == resolved:
                return "${%s}" % name
        return EnvironmentInterpolator.escape(value)

    def _embed(self, value: str) -> str:
        """References supplied values that appear as a whole word inside ``value``."""
        value = EnvironmentInterpolator.escape(value)
        for name, resolved in self.variables:
            pattern = r'(?<![\w.${])' + re.escape(EnvironmentInterpolator.escape(resolved)) + r'(?![\w.}])'
            value = re.sub(pattern, lambda _: "${%s}" % name, value)
        return value

    def _service(self, svc: ServiceDefinition) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if svc.build:
            build: Dict[str, Any] = {"context": svc.build.context, "dockerfile": svc.build.dockerfile}
            if svc.build.args:
                build["args"] = {k: self._ref(v) for k, v in svc.build.args.items()}
            out["build"] = build
        if svc.image:
            out["image"] = self._embed(svc.image)
        if svc.container_name:
            out["container_name"] = self._embed(svc.container_name)
        out["restart"] = svc.restart_policy.condition.value
        if svc.user:
            out["user"] = svc.user
        if svc.environment:
            out["environment"] = {k: self._ref(v) for k, v in svc.environment.items()}
        if svc.ports:
            out["ports"] = [
                f"{self._ref(str(p.host))}:{p.container}"
                + ("" if p.protocol == "tcp" else f"/{p.protocol}")
                for p in svc.ports
            ]
        if svc.volumes:
            out["volumes"] = [self._volume(v) for v in svc.volumes]
        if svc.networks:
            out["networks"] = list(svc.networks)
        if svc.health_check:
            out["healthcheck"] = self._health_check(svc.health_check)
        if svc.labels:
            out["labels"] = {k: self._ref(v) for k, v in svc.labels.items()}
        if svc.depends_on:
            if svc.wait_healthy:
                out["depends_on"] = {
                    dep: {"condition": self._dependency_condition(dep)} for dep in svc.depends_on
                }
            else:
                out["depends_on"] = list(svc.depends_on)
        if svc.replicas != 1:
            out["deploy"] = {"replicas": svc.replicas}
        return out

    @staticmethod
    def _volume(mount: VolumeMount) -> Any:
        if mount.type is None:
            return str(mount)
        out: Dict[str, Any] = {"type": mount.type}
        if mount.source:
            out["source"] = mount.source
        out["target"] = mount.target
        if mount.read_only:
            out["read_only"] = True
        return out

    def _dependency_condition(self, dep: str) -> str:
        hc = self.config.services[dep].health_check if dep in self.config.services else None
        return "service_healthy" if hc and not hc.disabled else "service_started"

    def _health_check(self, hc: HealthCheck) -> Dict[str, Any]:
        if hc.disabled:
            return {"disable": True}
        out: Dict[str, Any] = {
            "test": [EnvironmentInterpolator.escape(arg) for arg in hc.test],
            "interval": format_duration(hc.interval),
            "timeout": format_duration(hc.timeout),
            "retries": hc.retries,
        }
        if hc.start_period:
            out["start_period"] = format_duration(hc.start_period)
        return out
