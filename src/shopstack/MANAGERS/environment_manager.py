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
Managers for handling environment variables and .env file resolution.
"""
import logging
import os
from typing import Dict, List, Optional
from ..PARSERS.env_parser import EnvParser
from ..MODELS.stack_settings import StackSettings

log = logging.getLogger(__name__)


class EnvironmentManager:
    """
    Manages the merging and resolution of environment variables from multiple sources.
    """
    def __init__(self, base_dir: str = ".", process_env: Optional[Dict[str, str]] = None):
        """
        Initializes the environment manager.

        :param base_dir: The base directory for resolving relative paths to .env files.
        :param process_env: Variables of the calling process, os.environ by default.
        """
        self.base_dir = base_dir
        self.process_env = dict(os.environ) if process_env is None else process_env
        self.parser = EnvParser()

    def get_merged_environment(self,
                               env_files: List[str],
                               explicit_env: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """
        Merges .env files, the process environment and explicit definitions.

        Later files override earlier ones, the process environment overrides
        files and explicit values override everything. A listed file that
        does not exist is skipped with a warning.

        :param env_files: A list of paths to .env files.
        :param explicit_env: A dictionary of explicitly defined environment variables.
        :return: A dictionary containing the merged environment variables.
        """
        merged_env: Dict[str, str] = {}
        for env_file in env_files:
            file_path = os.path.join(self.base_dir, env_file)
            if os.path.exists(file_path):
                merged_env.update(self.parser.parse(file_path))
            else:
                log.warning("Environment file %s not found, skipping", file_path)

        merged_env.update(self.process_env)
        merged_env.update(explicit_env or {})
        return merged_env

    def load_settings(self, env_files: List[str],
                      explicit_env: Optional[Dict[str, str]] = None) -> StackSettings:
        """
        :raises MissingVariableError: If a deployment variable is not supplied.
        """
        return StackSettings.from_environment(self.get_merged_environment(env_files, explicit_env))
