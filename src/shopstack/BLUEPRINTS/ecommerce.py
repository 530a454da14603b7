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
The e-commerce demo deployment: a Redis cache, a Node.js API built from
./backend and a React bundle served by Nginx from ./client.
"""
from typing import Dict

from ..MODELS.build_recipe import BuildRecipe, BuildStage, Instruction
from ..MODELS.network_definition import IpamConfig, NetworkDefinition
from ..MODELS.orchestration_config import OrchestrationConfig
from ..MODELS.proxy_config import ProxyConfig
from ..MODELS.service_definition import (
    BuildSpec,
    HealthCheck,
    PortMapping,
    RestartPolicy,
    RestartPolicyCondition,
    ServiceDefinition,
    VolumeMount,
)
from ..MODELS.stack_settings import StackSettings

CACHE_SERVICE = "redis"
API_SERVICE = "backend"
STATIC_SERVICE = "frontend"

CACHE_IMAGE = "redis:7-alpine"
CACHE_PORT = 6379
API_PORT = 5000
STATIC_PORT = 80
API_HEALTH_ROUTE = "/api/products"

API_CONTEXT = "./backend"
STATIC_CONTEXT = "./client"
UPLOADS_HOST_PATH = "./backend/uploads"
UPLOADS_CONTAINER_PATH = "/app/uploads"

NODE_IMAGE = "node:13.12.0-alpine"
NGINX_IMAGE = "nginx:1.25.3-alpine"

# Application files carried into the API runtime image
API_RUNTIME_FILES = ["server.js", "models", "routes", "upload.js"]


def cache_url() -> str:
    """Connection string of the cache, addressed by service name on the shared network."""
    return f"redis://{CACHE_SERVICE}:{CACHE_PORT}"


def _probe(hc: HealthCheck) -> HealthCheck:
    return hc.model_copy(update={"interval": 30.0, "timeout": 10.0, "retries": 3})


def build_topology(settings: StackSettings, wait_ready: bool = True) -> OrchestrationConfig:
    """
    Declares the three services, their shared bridge network and the
    upload bind mount.

    :param settings: Values supplied through the environment.
    :param wait_ready: Dependents wait for their dependencies to be healthy.
    """
    project = settings.project_name
    network = f"{project}-network"
    restart = RestartPolicy(condition=RestartPolicyCondition.UNLESS_STOPPED)

    def labels(service: str) -> Dict[str, str]:
        return {"project": project, "service": service}

    redis = ServiceDefinition(
        name=CACHE_SERVICE,
        image=CACHE_IMAGE,
        container_name=f"{project}-{CACHE_SERVICE}",
        ports=[PortMapping(host=CACHE_PORT, container=CACHE_PORT)],
        networks=[network],
        restart_policy=restart,
        health_check=_probe(HealthCheck.command("redis-cli", "ping")),
        labels=labels(CACHE_SERVICE),
    )

    backend = ServiceDefinition(
        name=API_SERVICE,
        image=f"{project}-{API_SERVICE}:{settings.project_version}",
        build=BuildSpec(context=API_CONTEXT, args={"NODE_ENV": settings.node_env}),
        container_name=f"{project}-{API_SERVICE}",
        environment={
            "NODE_ENV": settings.node_env,
            "MONGODB_URI": settings.mongodb_uri,
            "REDIS_URL": cache_url(),
            "PORT": str(settings.backend_port),
        },
        ports=[PortMapping(host=settings.backend_port, container=API_PORT)],
        networks=[network],
        volumes=[VolumeMount(source=UPLOADS_HOST_PATH, target=UPLOADS_CONTAINER_PATH)],
        restart_policy=restart,
        health_check=_probe(HealthCheck.http(
            f"http://localhost:{API_PORT}{API_HEALTH_ROUTE}", start_period=40.0,
        )),
        depends_on=[CACHE_SERVICE],
        wait_healthy=wait_ready,
        labels=labels(API_SERVICE),
    )

    frontend = ServiceDefinition(
        name=STATIC_SERVICE,
        image=f"{project}-{STATIC_SERVICE}:{settings.project_version}",
        build=BuildSpec(context=STATIC_CONTEXT, args={"NODE_ENV": settings.node_env}),
        container_name=f"{project}-{STATIC_SERVICE}",
        environment={"NODE_ENV": settings.node_env},
        ports=[PortMapping(host=settings.frontend_port, container=STATIC_PORT)],
        networks=[network],
        restart_policy=restart,
        health_check=_probe(HealthCheck.http(
            f"http://localhost:{STATIC_PORT}", start_period=40.0,
        )),
        depends_on=[API_SERVICE],
        wait_healthy=wait_ready,
        labels=labels(STATIC_SERVICE),
    )

    return OrchestrationConfig(
        project_name=project,
        services={s.name: s for s in (redis, backend, frontend)},
        networks={
            network: NetworkDefinition(
                name=network,
                ipam=IpamConfig(
                    subnet=settings.network_subnet,
                    ip_range=settings.network_ip_range,
                    gateway=settings.network_gateway,
                ),
            )
        },
    )


def _i(instruction: str, *arguments: str) -> Instruction:
    return Instruction(
        instruction=instruction,
        arguments=list(arguments),
        exec_form=instruction in ("CMD", "ENTRYPOINT"),
    )


def backend_recipe() -> BuildRecipe:
    """
    Installs production dependencies in a builder stage, then copies them
    and the application files into a runtime stage that runs as a
    dedicated unprivileged user.
    """
    copies = [
        _i("COPY", "--from=builder --chown=nodeuser:nodejs /app/node_modules ./node_modules"),
        _i("COPY", "--from=builder --chown=nodeuser:nodejs /app/package*.json ./"),
    ]
    for path in API_RUNTIME_FILES:
        dest = f"./{path}/" if "." not in path else "./"
        copies.append(_i("COPY", f"--from=builder --chown=nodeuser:nodejs /app/{path} {dest}"))

    return BuildRecipe(name=API_SERVICE, stages=[
        BuildStage(base_image=NODE_IMAGE, alias="builder", comment="Build Stage", instructions=[
            _i("WORKDIR", "/app"),
            _i("COPY", "package*.json ./"),
            _i("RUN", "npm ci --only=production && npm cache clean --force"),
            _i("COPY", ". ."),
        ]),
        BuildStage(base_image=NODE_IMAGE, comment="Runtime Stage", instructions=[
            _i("RUN", "addgroup -g 1001 -S nodejs && adduser -S nodeuser -u 1001"),
            _i("WORKDIR", "/app"),
            *copies,
            _i("RUN", "mkdir -p uploads && chown nodeuser:nodejs uploads"),
            _i("USER", "nodeuser"),
            _i("EXPOSE", str(API_PORT)),
            _i("CMD", "npm", "start"),
        ]),
    ])


def frontend_recipe() -> BuildRecipe:
    """
    Builds the static bundle in a node stage and copies only the bundle and
    the server block into an Nginx image.
    """
    proxy = frontend_proxy()
    return BuildRecipe(name=STATIC_SERVICE, stages=[
        BuildStage(base_image=NODE_IMAGE, alias="builder", comment="Build Stage", instructions=[
            _i("WORKDIR", "/app"),
            _i("COPY", "package*.json ./"),
            _i("RUN", "npm ci --legacy-peer-deps && npm cache clean --force"),
            _i("COPY", ". ."),
            _i("RUN", "npm run build"),
        ]),
        BuildStage(base_image=NGINX_IMAGE, comment="Production Stage", instructions=[
            _i("COPY", "nginx.conf /etc/nginx/conf.d/default.conf"),
            _i("COPY", f"--from=builder /app/build {proxy.root}"),
            _i("EXPOSE", str(proxy.listen)),
            _i("CMD", "nginx", "-g", "daemon off;"),
        ]),
    ])


def frontend_proxy() -> ProxyConfig:
    """Server block of the static asset service."""
    return ProxyConfig(listen=STATIC_PORT)
