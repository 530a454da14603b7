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
Parsers for Docker Compose YAML files.
"""
import logging
import os
import yaml
from pydantic import ValidationError
from typing import Dict, Any, List, Optional
from ..MODELS.orchestration_config import OrchestrationConfig
from ..MODELS.network_definition import NetworkDefinition, IpamConfig
from ..MODELS.service_definition import (
    ServiceDefinition, RestartPolicy, VolumeMount, PortMapping, HealthCheck, BuildSpec,
)
from ..UTILS.string_interpolation import EnvironmentInterpolator
from ..UTILS.durations import parse_duration
from ..exceptions import ParseError

log = logging.getLogger(__name__)


class ComposeParser:
    """
    Parser for docker-compose.yml files.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None, strict: bool = True):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: A dictionary of environment variables for interpolation.
        :param strict: Fail on unset variables instead of substituting empty strings.
        """
        self.context = context if context is not None else dict(os.environ)
        self.strict = strict

    def parse(self, compose_path: str) -> OrchestrationConfig:
        """
        Parses a compose file from a path.

        :param compose_path: Path to the compose file.
        :return: Parsed configuration.
        """
        with open(compose_path, 'r') as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> OrchestrationConfig:
        """
        Parses a compose file from a string.

        :param content: YAML content of the compose file.
        :return: Parsed configuration.
        :raises MissingVariableError: In strict mode, if a ${VAR} is unset.
        :raises ParseError: If the YAML or a service entry is malformed.
        """
        content = EnvironmentInterpolator.interpolate(content, self.context, strict=self.strict)

        try:
            data = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise ParseError(f"Invalid compose YAML: {e}") from e
        if not isinstance(data, dict):
            raise ParseError("Compose file must be a mapping at the top level")

        for section in ('services', 'networks'):
            if not isinstance(data.get(section) or {}, dict):
                raise ParseError(f"'{section}' must be a mapping")

        services = {}
        for name, spec in (data.get('services') or {}).items():
            if spec is not None and not isinstance(spec, dict):
                raise ParseError(f"Service {name!r} must be a mapping")
            services[str(name)] = self._checked(str(name), self._parse_service, spec or {})

        networks = {}
        for name, spec in (data.get('networks') or {}).items():
            if spec is not None and not isinstance(spec, dict):
                raise ParseError(f"Network {name!r} must be a mapping")
            networks[str(name)] = self._checked(str(name), self._parse_network, spec or {})

        log.debug("Parsed %d service(s) and %d network(s)", len(services), len(networks))
        try:
            return OrchestrationConfig(
                project_name=str(data.get('name') or ''),
                services=services,
                networks=networks,
            )
        except ValidationError as e:
            raise ParseError(f"Invalid compose file: {e}") from e

    @staticmethod
    def _checked(name: str, parse, spec: Dict[str, Any]):
        """
        Runs one entry parser, reporting wrongly typed or missing fields as
        a ParseError that names the entry.
        """
        try:
            return parse(name, spec)
        except ValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ParseError(f"{name}: {errors}") from e
        except KeyError as e:
            raise ParseError(f"{name}: missing field {e}") from e
        except (AttributeError, TypeError, ValueError) as e:
            raise ParseError(f"{name}: {e}") from e

    def _parse_service(self, name: str, spec: Dict[str, Any]) -> ServiceDefinition:
        """
        Parses a single service definition from a compose file.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :return: A ServiceDefinition instance.
        """
        try:
            restart_policy = RestartPolicy(condition=spec.get('restart', 'no'))
        except ValueError as e:
            raise ParseError(f"{name}: invalid restart policy {spec.get('restart')!r}") from e

        depends_on = spec.get('depends_on', [])
        wait_healthy = False
        if isinstance(depends_on, dict):
            wait_healthy = any(
                isinstance(v, dict) and v.get('condition') == 'service_healthy'
                for v in depends_on.values()
            )
            depends_on = list(depends_on.keys())

        networks = spec.get('networks', [])
        if isinstance(networks, dict):
            networks = list(networks.keys())

        deploy = spec.get('deploy') or {}

        return ServiceDefinition(
            name=name,
            image=spec.get('image', ''),
            build=self._parse_build(spec.get('build')),
            container_name=spec.get('container_name'),
            environment=self._parse_environment(spec.get('environment', [])),
            ports=[self._parse_port(name, p) for p in spec.get('ports', [])],
            networks=list(networks),
            volumes=[self._parse_volume(name, v) for v in spec.get('volumes', [])],
            restart_policy=restart_policy,
            health_check=self._parse_health_check(spec.get('healthcheck')),
            depends_on=list(depends_on),
            wait_healthy=wait_healthy,
            replicas=int(deploy.get('replicas', 1)),
            labels=self._parse_environment(spec.get('labels', {})),
            user=spec.get('user'),
        )

    def _parse_build(self, build: Any) -> Optional[BuildSpec]:
        if build is None:
            return None
        if isinstance(build, str):
            return BuildSpec(context=build)
        return BuildSpec(
            context=build.get('context', '.'),
            dockerfile=build.get('dockerfile', 'Dockerfile'),
            args=self._parse_environment(build.get('args', {})),
        )

    def _parse_port(self, service: str, port: Any) -> PortMapping:
        """
        Parses "host:container", "ip:host:container" (with optional /proto)
        or the long syntax. A port without a host side is rejected because
        every binding in this deployment is static.
        """
        if isinstance(port, dict):
            if 'published' not in port:
                raise ParseError(f"{service}: port {port} has no published host port")
            if 'target' not in port:
                raise ParseError(f"{service}: port {port} has no target container port")
            try:
                return PortMapping(
                    host=int(port['published']),
                    container=int(port['target']),
                    protocol=port.get('protocol', 'tcp'),
                )
            except ValueError as e:
                raise ParseError(f"{service}: invalid port mapping {port!r}") from e
        text = str(port)
        protocol = 'tcp'
        if '/' in text:
            text, protocol = text.split('/', 1)
        parts = text.split(':')
        if len(parts) < 2:
            raise ParseError(f"{service}: port {port!r} has no published host port")
        try:
            return PortMapping(host=int(parts[-2]), container=int(parts[-1]), protocol=protocol)
        except ValueError as e:
            raise ParseError(f"{service}: invalid port mapping {port!r}") from e

    def _parse_volume(self, service: str, volume: Any) -> VolumeMount:
        if isinstance(volume, dict):
            kind = volume.get('type', 'volume')
            if 'target' not in volume:
                raise ParseError(f"{service}: volume {volume} has no target")
            if kind == 'bind' and not volume.get('source'):
                raise ParseError(f"{service}: bind mount {volume} has no source")
            return VolumeMount(
                source=volume.get('source') or '',
                target=volume['target'],
                read_only=volume.get('read_only', False),
                type=kind,
            )
        parts = str(volume).split(':')
        if len(parts) == 1:
            # anonymous volume, only the container path is given
            return VolumeMount(target=parts[0], type='volume')
        if len(parts) == 2:
            return VolumeMount(source=parts[0], target=parts[1])
        if len(parts) == 3:
            return VolumeMount(source=parts[0], target=parts[1], read_only=(parts[2] == 'ro'))
        raise ParseError(f"{service}: invalid volume {volume!r}")

    def _parse_health_check(self, spec: Optional[Dict[str, Any]]) -> Optional[HealthCheck]:
        if not spec:
            return None
        if spec.get('disable'):
            return HealthCheck(test=["NONE"])
        test = spec.get('test', [])
        if isinstance(test, str):
            test = ["CMD-SHELL", test]
        kwargs = {'test': list(test)}
        for key in ('interval', 'timeout', 'start_period'):
            if key in spec:
                kwargs[key] = parse_duration(spec[key])
        if 'retries' in spec:
            kwargs['retries'] = int(spec['retries'])
        return HealthCheck(**kwargs)

    def _parse_network(self, name: str, spec: Dict[str, Any]) -> NetworkDefinition:
        ipam = None
        configs = (spec.get('ipam') or {}).get('config') or []
        if configs:
            first = configs[0]
            ipam = IpamConfig(
                subnet=str(first.get('subnet', '')),
                ip_range=first.get('ip_range'),
                gateway=first.get('gateway'),
            )
        return NetworkDefinition(name=name, driver=spec.get('driver', 'bridge'), ipam=ipam)

    def _parse_environment(self, env_spec: Any) -> Dict[str, str]:
        """
        Normalizes the list ("KEY=VALUE") and mapping forms to a dict of strings.
        """
        environment = {}
        if isinstance(env_spec, list):
            for e in env_spec:
                if '=' in e:
                    k, v = e.split('=', 1)
                    environment[k] = v
        elif isinstance(env_spec, dict):
            environment = {k: '' if v is None else str(v) for k, v in env_spec.items()}
        return environment
