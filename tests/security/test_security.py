import os
import subprocess

import pytest
import yaml
from shopstack.BLUEPRINTS import ecommerce
from shopstack.CONVERTERS.to_compose import ComposeConverter
from shopstack.CONVERTERS.to_dockerfile import DockerfileConverter
from shopstack.MANAGERS.topology_validator import TopologyValidator
from shopstack.MODELS.orchestration_config import OrchestrationConfig
from shopstack.MODELS.proxy_config import ProxyConfig
from shopstack.MODELS.service_definition import ServiceDefinition
from shopstack.RUNNERS.engine_client import DockerEngineClient
from shopstack.exceptions import TopologyError


def test_engine_commands_never_use_a_shell(monkeypatch):
    """
    Arguments reach docker as a list, so shell operators are literal.
    """
    seen = []

    def fake_run(cmd, **kwargs):
        seen.append((cmd, kwargs))
        return subprocess.CompletedProcess(cmd, 0, "", "")

    monkeypatch.setattr(subprocess, "run", fake_run)
    client = DockerEngineClient("yolo")
    client.stop("yolo-backend; touch injected.txt")
    client.exec_probe("yolo-redis", ["CMD", "redis-cli", "ping", "&&", "rm", "-rf", "/"], 5)

    for cmd, kwargs in seen:
        assert isinstance(cmd, list)
        assert not kwargs.get("shell")
    assert seen[0][0][-1] == "yolo-backend; touch injected.txt"
    assert not os.path.exists("injected.txt")


def test_service_names_with_shell_metacharacters_are_rejected():
    name = "api;rm"
    config = OrchestrationConfig(services={name: ServiceDefinition(name=name, image="x")})
    with pytest.raises(TopologyError):
        TopologyValidator().validate(config)


def test_database_uri_not_baked_into_images(settings):
    """The connection string is runtime environment only, never a build input."""
    for recipe in (ecommerce.backend_recipe(), ecommerce.frontend_recipe()):
        assert settings.mongodb_uri not in DockerfileConverter(recipe).render()

    text = ComposeConverter(ecommerce.build_topology(settings), settings.as_environment()).render()
    assert settings.mongodb_uri not in text
    doc = yaml.safe_load(text)
    for svc in doc["services"].values():
        assert "MONGODB_URI" not in svc.get("build", {}).get("args", {})


def test_api_runtime_is_unprivileged():
    recipe = ecommerce.backend_recipe()
    assert recipe.runtime.user not in (None, "root", "0")


@pytest.mark.parametrize("path", [
    "/../../etc/passwd",
    "/%2e%2e/%2e%2e/etc/passwd",
    "//etc/passwd",
])
def test_static_server_never_leaves_root(path):
    proxy = ProxyConfig()
    served = proxy.resolve(path, exists=lambda p: p == "/etc/passwd", is_dir=lambda p: p == "/")
    # /etc/passwd here is relative to the bundle root, never the host
    assert not served.startswith("/..")
