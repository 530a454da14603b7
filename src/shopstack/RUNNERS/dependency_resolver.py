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
Dependency resolution for services to determine startup and shutdown order.
"""
from typing import List
from ..MODELS.orchestration_config import OrchestrationConfig
from ..exceptions import CircularDependencyError, UnknownServiceError


class DependencyResolver:
    """
    Resolves the startup and shutdown order of services based on their dependencies.
    """
    def resolve_order(self, config: OrchestrationConfig) -> List[str]:
        """
        Determines the correct order to start services using topological sort.
        Ties keep declaration order.

        :param config: The orchestration configuration.
        :return: Service names in the order they should be started.
        :raises UnknownServiceError: If a dependency is not declared.
        :raises CircularDependencyError: If a circular dependency is detected.
        """
        services = config.services
        unknown = [
            f"{name} depends on undeclared service {dep}"
            for name, svc in services.items()
            for dep in svc.depends_on
            if dep not in services
        ]
        if unknown:
            raise UnknownServiceError(unknown)

        ordered = []
        visited = set()
        processing = []

        def visit(name):
            if name in processing:
                cycle = processing[processing.index(name):] + [name]
                raise CircularDependencyError([f"Circular dependency: {' -> '.join(cycle)}"])
            if name not in visited:
                processing.append(name)
                for dep in services[name].depends_on:
                    visit(dep)
                processing.pop()
                visited.add(name)
                ordered.append(name)

        for name in services:
            visit(name)

        return ordered

    def stop_order(self, config: OrchestrationConfig) -> List[str]:
        """
        Dependents stop before their dependencies.
        """
        return list(reversed(self.resolve_order(config)))

    def dependents(self, config: OrchestrationConfig, name: str) -> List[str]:
        """
        Services that directly depend on ``name``.
        """
        return [n for n, svc in config.services.items() if name in svc.depends_on]
