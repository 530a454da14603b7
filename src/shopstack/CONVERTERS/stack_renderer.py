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
Writes every deployment artifact of the stack to a directory.
"""
import logging
import os
from typing import Dict, List, Optional

from ..BLUEPRINTS import ecommerce
from ..MODELS.build_recipe import BuildRecipe
from ..MODELS.orchestration_config import OrchestrationConfig
from ..MODELS.proxy_config import ProxyConfig
from .to_compose import ComposeConverter
from .to_dockerfile import DockerfileConverter
from .to_nginx import NginxConverter

log = logging.getLogger(__name__)

COMPOSE_FILENAME = "docker-compose.yml"


class StackRenderer:
    """
    Renders the compose manifest, one Dockerfile per built service and the
    static server block.
    """

    def __init__(
        self,
        config: OrchestrationConfig,
        recipes: Optional[Dict[str, BuildRecipe]] = None,
        proxy: Optional[ProxyConfig] = None,
        variables: Optional[Dict[str, str]] = None,
    ):
        """
        :param config: The topology.
        :param recipes: Build recipes keyed by service name; the stack's own by default.
        :param proxy: Static server block; the stack's own by default.
        :param variables: Supplied variables, written to the manifest as references.
        """
        self.config = config
        self.recipes = recipes if recipes is not None else {
            ecommerce.API_SERVICE: ecommerce.backend_recipe(),
            ecommerce.STATIC_SERVICE: ecommerce.frontend_recipe(),
        }
        self.proxy = proxy if proxy is not None else ecommerce.frontend_proxy()
        self.variables = variables

    def render(self, out_dir: str) -> List[str]:
        """
        :param out_dir: Destination directory, created when missing.
        :return: Paths written.
        """
        os.makedirs(out_dir, exist_ok=True)
        written = [ComposeConverter(self.config, self.variables).write(os.path.join(out_dir, COMPOSE_FILENAME))]

        for name, recipe in self.recipes.items():
            svc = self.config.services.get(name)
            if svc is None or svc.build is None:
                log.warning("No build context for %s, skipping its Dockerfile", name)
                continue
            context = os.path.join(out_dir, svc.build.context)
            os.makedirs(context, exist_ok=True)
            written.append(DockerfileConverter(recipe).write(os.path.join(context, svc.build.dockerfile)))

        static = self.config.services.get(ecommerce.STATIC_SERVICE)
        if static is not None and static.build is not None:
            path = os.path.join(out_dir, static.build.context, "nginx.conf")
            written.append(NginxConverter(self.proxy).write(path))

        for path in written:
            log.info("Wrote %s", path)
        return written
