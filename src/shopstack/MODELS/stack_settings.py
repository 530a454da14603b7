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
Deployment parameters supplied through the environment.
"""
from typing import Dict
from pydantic import BaseModel, Field, ValidationError

from ..exceptions import InvalidVariableError, MissingVariableError

REQUIRED_VARIABLES = (
    "PROJECT_NAME",
    "PROJECT_VERSION",
    "NODE_ENV",
    "MONGODB_URI",
    "BACKEND_PORT",
    "FRONTEND_PORT",
    "NETWORK_SUBNET",
    "NETWORK_IP_RANGE",
    "NETWORK_GATEWAY",
)


class StackSettings(BaseModel):
    """
    Every value the deployment consumes. None of them has a default.
    """
    project_name: str = Field(alias="PROJECT_NAME")
    project_version: str = Field(alias="PROJECT_VERSION")
    node_env: str = Field(alias="NODE_ENV")
    mongodb_uri: str = Field(alias="MONGODB_URI")
    backend_port: int = Field(alias="BACKEND_PORT", gt=0, lt=65536)
    frontend_port: int = Field(alias="FRONTEND_PORT", gt=0, lt=65536)
    network_subnet: str = Field(alias="NETWORK_SUBNET")
    network_ip_range: str = Field(alias="NETWORK_IP_RANGE")
    network_gateway: str = Field(alias="NETWORK_GATEWAY")

    @classmethod
    def from_environment(cls, env: Dict[str, str]) -> "StackSettings":
        """
        Builds settings from a variable mapping.

        :raises MissingVariableError: Naming every unset or empty variable.
        :raises InvalidVariableError: Naming every variable whose value is rejected.
        """
        missing = [name for name in REQUIRED_VARIABLES if not env.get(name)]
        if missing:
            raise MissingVariableError(missing)
        values = {name: env[name] for name in REQUIRED_VARIABLES}
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            problems = {}
            for err in e.errors():
                name = str(err['loc'][0])
                problems[name] = f"{values.get(name)!r} ({err['msg']})"
            raise InvalidVariableError(problems) from e

    def as_environment(self) -> Dict[str, str]:
        return {k: str(v) for k, v in self.model_dump(by_alias=True).items()}
