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
Parsers for Dockerfiles, extracting instructions and build stages.
"""
import json
import re
from typing import List, Optional
from ..MODELS.build_recipe import BuildRecipe, BuildStage, Instruction
from ..exceptions import ParseError


class DockerfileParser:
    """
    Parser for Dockerfile instructions.
    """
    def parse(self, dockerfile_path: str) -> List[Instruction]:
        """
        Parses a Dockerfile from a file path.

        Args:
            dockerfile_path (str): Path to the Dockerfile.

        Returns:
            List[Instruction]: List of parsed instructions.
        """
        with open(dockerfile_path, 'r') as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> List[Instruction]:
        """
        Parses a Dockerfile from a string content.

        Args:
            content (str): Content of the Dockerfile.

        Returns:
            List[Instruction]: List of parsed instructions.
        """
        instructions = []

        content = re.sub(r'^\s*#.*$', '', content, flags=re.MULTILINE)
        # Only a backslash directly before the newline continues the line
        content = re.sub(r'\\[ \t]*\n', ' ', content)

        pattern = re.compile(r'^\s*([A-Za-z]+)\s+(.*)$', re.MULTILINE)

        for match in pattern.finditer(content):
            inst = match.group(1).upper()
            args_str = match.group(2).strip()
            exec_form = False

            # Exec form vs shell form
            if args_str.startswith('[') and args_str.endswith(']'):
                try:
                    args = json.loads(args_str)
                    exec_form = all(isinstance(a, str) for a in args)
                except json.JSONDecodeError:
                    exec_form = False
                if not exec_form:
                    args = [args_str]
            elif inst == "ENV" and '=' in args_str:
                args = re.findall(r'(\S+=\S+)', args_str)
            else:
                args = [args_str]

            instructions.append(Instruction(
                instruction=inst,
                arguments=args,
                raw=match.group(0).strip(),
                exec_form=exec_form,
            ))

        return instructions

    def parse_recipe(self, content: str, name: str) -> BuildRecipe:
        """
        Splits a Dockerfile into its build stages.

        Args:
            content (str): Content of the Dockerfile.
            name (str): Name of the recipe, usually the service name.

        Returns:
            BuildRecipe: The recipe, one stage per FROM instruction.

        Raises:
            ParseError: If an instruction precedes the first FROM.
        """
        recipe = BuildRecipe(name=name)
        current: Optional[BuildStage] = None
        for inst in self.parse_from_string(content):
            if inst.instruction == "FROM":
                parts = [p for p in inst.line.split() if not p.startswith("--")]
                if not parts:
                    raise ParseError(f"{name}: FROM without a base image")
                alias = None
                if len(parts) >= 3 and parts[-2].upper() == "AS":
                    alias = parts[-1]
                current = BuildStage(base_image=parts[0], alias=alias)
                recipe.stages.append(current)
            elif current is None:
                if inst.instruction == "ARG":
                    continue
                raise ParseError(f"{name}: {inst.instruction} before the first FROM")
            else:
                current.instructions.append(inst)
        return recipe
