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
Converter from a multi-stage build recipe to a Dockerfile.
"""
import json
from jinja2 import Environment

from ..MODELS.build_recipe import BuildRecipe, Instruction

DOCKERFILE_TEMPLATE = """\
{% for stage in recipe.stages %}
{% if stage.comment %}# ---------- {{ stage.comment }} ----------
{% endif %}FROM {{ stage.base_image }}{% if stage.alias %} AS {{ stage.alias }}{% endif %}

{% for inst in stage.instructions %}
{{ inst | instruction }}
{% endfor %}
{% if not loop.last %}

{% endif %}
{% endfor %}
"""


def format_instruction(inst: Instruction) -> str:
    if inst.exec_form:
        return f"{inst.instruction} {json.dumps(inst.arguments)}"
    return f"{inst.instruction} {inst.line}"


class DockerfileConverter:
    """
    Renders a BuildRecipe as Dockerfile text.
    """

    def __init__(self, recipe: BuildRecipe):
        self.recipe = recipe
        env = Environment(trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True)
        env.filters["instruction"] = format_instruction
        self.template = env.from_string(DOCKERFILE_TEMPLATE)

    def render(self) -> str:
        return self.template.render(recipe=self.recipe)

    def write(self, path: str) -> str:
        with open(path, "w") as f:
            f.write(self.render())
        return path
