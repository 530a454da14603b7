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
Models for multi-stage container build recipes.
"""
import re
from typing import List, Optional
from pydantic import BaseModel

# Commands that belong to a build stage, never to the runtime stage.
BUILD_TOOLING = re.compile(r'\b(npm (ci|install|run build)|yarn( install| build)?|pip install|make|gcc)\b')


class Instruction(BaseModel):
    """
    Represents a single instruction in a Dockerfile.
    """
    instruction: str
    arguments: List[str]
    raw: str = ""
    exec_form: bool = False

    @property
    def line(self) -> str:
        return " ".join(self.arguments)

    @property
    def copy_source_stage(self) -> Optional[str]:
        """The ``--from`` stage of a COPY instruction, if any."""
        if self.instruction != "COPY":
            return None
        for arg in self.line.split():
            if arg.startswith("--from="):
                return arg.split("=", 1)[1]
        return None


class BuildStage(BaseModel):
    """
    One ``FROM`` section of a recipe.
    """
    base_image: str
    alias: Optional[str] = None
    comment: Optional[str] = None
    instructions: List[Instruction] = []

    def find(self, name: str) -> List[Instruction]:
        return [i for i in self.instructions if i.instruction == name]

    @property
    def user(self) -> Optional[str]:
        users = self.find("USER")
        return users[-1].line if users else None


class BuildRecipe(BaseModel):
    """
    A multi-stage build: intermediate stages produce artifacts and the final
    stage is the runtime image.
    """
    name: str
    stages: List[BuildStage] = []

    @property
    def runtime(self) -> BuildStage:
        return self.stages[-1]

    def check_contract(self, require_non_root: bool = False) -> List[str]:
        """
        Checks the build-stage / runtime-stage separation.

        :param require_non_root: The runtime stage must switch to a non-root USER.
        :return: Problems found, empty when the contract holds.
        """
        problems = []
        if len(self.stages) < 2:
            return [f"{self.name}: expected a build stage and a runtime stage, found {len(self.stages)} stage(s)"]

        earlier = {s.alias for s in self.stages[:-1] if s.alias}
        earlier.update(str(i) for i in range(len(self.stages) - 1))
        for inst in self.runtime.instructions:
            stage = inst.copy_source_stage
            if stage is not None and stage not in earlier:
                problems.append(f"{self.name}: runtime stage copies from unknown stage {stage!r}")
            if inst.instruction == "RUN" and BUILD_TOOLING.search(inst.line):
                problems.append(f"{self.name}: runtime stage runs build tooling: {inst.line}")

        if not any(i.copy_source_stage for i in self.runtime.instructions):
            problems.append(f"{self.name}: runtime stage copies nothing from a build stage")

        if require_non_root:
            user = self.runtime.user
            if not user or user.split(":")[0] in ("root", "0"):
                problems.append(f"{self.name}: runtime stage must run as a non-root user")
        return problems
