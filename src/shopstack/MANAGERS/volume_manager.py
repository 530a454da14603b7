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
Volume management for services: host directories behind bind mounts.
"""
import logging
import os
from typing import Dict, List
from ..MODELS.service_definition import ServiceDefinition, VolumeMount

log = logging.getLogger(__name__)


class VolumeManager:
    """
    Prepares the host side of bind mounts.

    Host directories are created on first start and are never removed, so
    their content outlives container recreation and teardown.
    """
    def __init__(self, base_dir: str = "."):
        """
        :param base_dir: The base directory for resolving relative host paths,
            normally the directory holding the compose file.
        """
        self.base_dir = os.path.abspath(base_dir)

    def resolve_source(self, source: str) -> str:
        """
        Resolves the host path of a bind mount.

        :param source: The source path as written in the manifest.
        :return: The absolute host path.
        """
        return os.path.abspath(os.path.join(self.base_dir, os.path.expanduser(source)))

    def prepare_volumes(self, service_def: ServiceDefinition) -> Dict[str, str]:
        """
        Creates missing host directories for a service's bind mounts.

        :param service_def: The service definition.
        :return: {container_path: host_path}
        """
        prepared = {}
        for mount in service_def.bind_mounts:
            source_path = self.resolve_source(mount.source)
            if not os.path.exists(source_path):
                log.info("Creating host directory %s for %s", source_path, service_def.name)
                os.makedirs(source_path, exist_ok=True)
            prepared[mount.target] = source_path
        return prepared

    def host_path(self, service_def: ServiceDefinition, target: str) -> str:
        """
        Host path bound at ``target`` inside the service.

        :raises KeyError: If nothing is mounted there.
        """
        for mount in service_def.bind_mounts:
            if mount.target.rstrip("/") == target.rstrip("/"):
                return self.resolve_source(mount.source)
        raise KeyError(f"{service_def.name} has no bind mount at {target}")

    def shared_writers(self, services: List[ServiceDefinition]) -> Dict[str, List[str]]:
        """
        Host paths written by more than one container (several services, or
        one service with several replicas). No locking is applied to them.
        """
        writers: Dict[str, List[str]] = {}
        for svc in services:
            for mount in svc.bind_mounts:
                if mount.read_only:
                    continue
                path = self.resolve_source(mount.source)
                writers.setdefault(path, []).extend([svc.name] * max(svc.replicas, 1))
        return {p: names for p, names in writers.items() if len(names) > 1}

    def describe(self, mounts: List[VolumeMount]) -> List[str]:
        return [f"{self.resolve_source(m.source)} -> {m.target}{' (ro)' if m.read_only else ''}" for m in mounts]
