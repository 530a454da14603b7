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
Container lifecycle states shared by every service, and the restart rule.
"""
import logging
from enum import Enum
from typing import Dict, List, Optional, Set

from ..MODELS.service_definition import RestartPolicy, RestartPolicyCondition
from ..exceptions import InvalidTransitionError

log = logging.getLogger(__name__)


class ServiceState(str, Enum):
    """Lifecycle state of a service container."""

    CREATED = "created"
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    RUNNING = "running"  # up, without a health probe
    STOPPING = "stopping"
    STOPPED = "stopped"


TRANSITIONS: Dict[ServiceState, Set[ServiceState]] = {
    ServiceState.CREATED: {ServiceState.STARTING, ServiceState.STOPPED},
    ServiceState.STARTING: {
        ServiceState.HEALTHY, ServiceState.UNHEALTHY, ServiceState.RUNNING,
        ServiceState.STOPPING, ServiceState.STOPPED,
    },
    ServiceState.HEALTHY: {
        ServiceState.UNHEALTHY, ServiceState.RUNNING, ServiceState.STOPPING, ServiceState.STOPPED,
    },
    ServiceState.UNHEALTHY: {
        ServiceState.HEALTHY, ServiceState.STARTING, ServiceState.STOPPING, ServiceState.STOPPED,
    },
    ServiceState.RUNNING: {
        ServiceState.HEALTHY, ServiceState.UNHEALTHY, ServiceState.STOPPING, ServiceState.STOPPED,
    },
    ServiceState.STOPPING: {ServiceState.STOPPED},
    ServiceState.STOPPED: {ServiceState.STARTING},
}


def restart_allowed(policy: RestartPolicy, explicit_stop: bool, exit_code: Optional[int]) -> bool:
    """
    Decides whether a stopped or unhealthy service re-enters ``starting``.

    :param policy: The service's restart policy.
    :param explicit_stop: The operator stopped the service.
    :param exit_code: Exit code, None while the process is still up (unhealthy).
    """
    condition = policy.condition
    if condition == RestartPolicyCondition.NO:
        return False
    if condition == RestartPolicyCondition.ALWAYS:
        return True
    if condition == RestartPolicyCondition.ON_FAILURE:
        return exit_code is None or exit_code != 0
    if condition == RestartPolicyCondition.UNLESS_STOPPED:
        return not explicit_stop
    return False


class ServiceLifecycle:
    """
    Tracks the lifecycle state of one service.
    """

    def __init__(self, name: str):
        self.name = name
        self.state = ServiceState.CREATED
        self.explicit_stop = False
        self.exit_code: Optional[int] = None
        self.history: List[ServiceState] = [ServiceState.CREATED]

    def transition(self, new_state: ServiceState) -> None:
        """
        :raises InvalidTransitionError: If the move is not in the transition table.
        """
        if new_state == self.state:
            return
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"{self.name}: cannot move from {self.state.value} to {new_state.value}"
            )
        log.debug("%s: %s -> %s", self.name, self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)
        if new_state == ServiceState.STARTING:
            self.explicit_stop = False
            self.exit_code = None

    def start(self) -> None:
        self.transition(ServiceState.STARTING)

    def request_stop(self) -> None:
        self.explicit_stop = True
        if self.state in (ServiceState.CREATED, ServiceState.STOPPED):
            self.transition(ServiceState.STOPPED)
        else:
            self.transition(ServiceState.STOPPING)

    def exited(self, exit_code: Optional[int]) -> None:
        self.transition(ServiceState.STOPPED)
        self.exit_code = exit_code
