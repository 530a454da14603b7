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
Unit tests for dependency resolution and topology validation.
"""
import logging

import pytest
from shopstack.BLUEPRINTS import ecommerce
from shopstack.MANAGERS.topology_validator import TopologyValidator
from shopstack.MODELS.network_definition import NetworkDefinition
from shopstack.MODELS.orchestration_config import OrchestrationConfig
from shopstack.MODELS.service_definition import HealthCheck, ServiceDefinition
from shopstack.RUNNERS.dependency_resolver import DependencyResolver
from shopstack.exceptions import (
    CircularDependencyError,
    NetworkAddressError,
    PortConflictError,
    TopologyError,
    UnknownServiceError,
)


def _config(**deps):
    return OrchestrationConfig(services={
        name: ServiceDefinition(name=name, image=name, depends_on=list(d)) for name, d in deps.items()
    })


class TestDependencyResolver:
    """Tests for DependencyResolver."""

    def test_stack_order(self, topology):
        resolver = DependencyResolver()
        assert resolver.resolve_order(topology) == ["redis", "backend", "frontend"]
        assert resolver.stop_order(topology) == ["frontend", "backend", "redis"]

    def test_declaration_order_independent(self):
        config = _config(web=["api"], api=["db"], db=[])
        assert DependencyResolver().resolve_order(config) == ["db", "api", "web"]

    def test_dependents(self, topology):
        assert DependencyResolver().dependents(topology, "redis") == ["backend"]
        assert DependencyResolver().dependents(topology, "frontend") == []

    def test_cycle(self):
        with pytest.raises(CircularDependencyError) as excinfo:
            DependencyResolver().resolve_order(_config(a=["b"], b=["c"], c=["a"]))
        assert "a -> b -> c -> a" in str(excinfo.value)

    def test_unknown_dependency(self):
        with pytest.raises(UnknownServiceError) as excinfo:
            DependencyResolver().resolve_order(_config(api=["db"]))
        assert excinfo.value.problems == ["api depends on undeclared service db"]


class TestTopologyValidator:
    """Tests for TopologyValidator."""

    def test_stack_is_valid(self, topology, tmp_path):
        TopologyValidator(str(tmp_path)).validate(topology)

    def test_duplicate_host_port(self, topology):
        topology.services["frontend"].ports[0].host = 5000
        with pytest.raises(PortConflictError) as excinfo:
            TopologyValidator().validate(topology)
        assert "bound by both backend and frontend" in excinfo.value.problems[0]

    def test_replicas_with_published_port(self, topology):
        topology.services["backend"].container_name = None
        topology.services["backend"].replicas = 2
        with pytest.raises(PortConflictError):
            TopologyValidator().validate(topology)

    def test_replicas_with_container_name(self, topology):
        backend = topology.services["backend"]
        backend.ports = []
        backend.replicas = 3
        with pytest.raises(TopologyError) as excinfo:
            TopologyValidator().validate(topology)
        assert "cannot run 3 replicas" in str(excinfo.value)

    def test_shared_upload_directory_warns(self, topology, caplog):
        backend = topology.services["backend"]
        backend.ports = []
        backend.container_name = None
        backend.replicas = 2
        with caplog.at_level(logging.WARNING, logger="shopstack"):
            TopologyValidator().validate(topology)
        assert "without any locking" in caplog.text

    def test_undeclared_dependency(self, topology):
        topology.services["backend"].depends_on.append("mongo")
        with pytest.raises(UnknownServiceError):
            TopologyValidator().validate(topology)

    def test_dependency_on_another_network(self, topology):
        topology.networks["edge"] = NetworkDefinition(name="edge")
        topology.services["frontend"].networks = ["edge"]
        with pytest.raises(TopologyError) as excinfo:
            TopologyValidator().validate(topology)
        assert "share no network" in str(excinfo.value)

    def test_undeclared_network_and_driver(self, topology):
        topology.services["redis"].networks.append("ghost")
        topology.networks["yolo-network"].driver = "overlay"
        with pytest.raises(TopologyError) as excinfo:
            TopologyValidator().validate(topology)
        assert len(excinfo.value.problems) == 2

    def test_bad_addressing(self, topology):
        topology.networks["yolo-network"].ipam.gateway = "192.168.0.1"
        with pytest.raises(NetworkAddressError):
            TopologyValidator().validate(topology)

    def test_mixed_problems_raise_base_error(self, topology):
        """Problems of several kinds are reported together."""
        topology.services["frontend"].ports[0].host = 6379
        topology.services["redis"].image = ""
        with pytest.raises(TopologyError) as excinfo:
            TopologyValidator().validate(topology)
        assert type(excinfo.value) is TopologyError
        assert len(excinfo.value.problems) == 2

    def test_invalid_service_name_and_probe(self):
        config = OrchestrationConfig(services={
            "bad name": ServiceDefinition(
                name="bad name", image="x",
                health_check=HealthCheck(test=["CMD", "true"], interval=0, retries=0),
            ),
        })
        problems = [msg for _, msg in TopologyValidator().problems(config)]
        assert any("not a valid hostname" in p for p in problems)
        assert any("positive interval" in p for p in problems)
        assert any("at least one retry" in p for p in problems)

    def test_blueprint_without_readiness(self, settings):
        config = ecommerce.build_topology(settings, wait_ready=False)
        assert not config.services["backend"].wait_healthy
        TopologyValidator().validate(config)
