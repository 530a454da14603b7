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
Exceptions raised by shopstack.
"""
from typing import Dict, Iterable, List


class StackException(Exception):
    """Base shopstack exception class."""

    pass


class MissingVariableError(StackException):
    """One or more required environment variables are unset or empty."""

    def __init__(self, names: Iterable[str]):
        self.names: List[str] = sorted(set(names))
        super().__init__(
            f"Missing required variable(s): {', '.join(self.names)}"
        )


class InvalidVariableError(StackException):
    """One or more environment variables hold a value of the wrong kind."""

    def __init__(self, problems: Dict[str, str]):
        self.problems = dict(sorted(problems.items()))
        super().__init__(
            "Invalid variable(s): "
            + "; ".join(f"{name}: {reason}" for name, reason in self.problems.items())
        )


class TopologyError(StackException):
    """The deployment topology violates one or more invariants."""

    def __init__(self, problems: Iterable[str]):
        self.problems: List[str] = list(problems)
        super().__init__("; ".join(self.problems))


class PortConflictError(TopologyError):
    """Two services (or a service and the host) claim the same host port."""

    pass


class UnknownServiceError(TopologyError):
    """A service references another service that is not declared."""

    pass


class CircularDependencyError(TopologyError):
    """Service dependencies form a cycle."""

    pass


class NetworkAddressError(TopologyError):
    """Network addressing parameters are malformed or inconsistent."""

    pass


class ParseError(StackException):
    """A deployment artifact could not be parsed."""

    pass


class EngineCommandError(StackException):
    """The container engine rejected a command."""

    def __init__(self, command: List[str], returncode: int, output: str = ""):
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"Command '{' '.join(command)}' failed with exit code {returncode}: "
            f"{output.strip()}"
        )


class ReadinessTimeoutError(StackException):
    """A dependency did not become healthy within its budget."""

    pass


class InvalidTransitionError(StackException):
    """A service lifecycle transition is not allowed."""

    pass


class AcceptanceCheckError(StackException):
    """A deployment acceptance check could not be carried out."""

    pass
