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
Models for the shared bridge network and its address management.
"""
import ipaddress
from typing import List, Optional
from pydantic import BaseModel

from ..exceptions import NetworkAddressError


class IpamConfig(BaseModel):
    """
    Address range of a network: subnet, allocatable range and gateway.
    """
    subnet: str
    ip_range: Optional[str] = None
    gateway: Optional[str] = None

    def check(self) -> List[str]:
        """
        Returns the addressing problems, empty when the configuration is consistent.
        """
        try:
            subnet = ipaddress.ip_network(self.subnet, strict=True)
        except ValueError as e:
            return [f"invalid subnet {self.subnet!r}: {e}"]

        problems = []
        if self.ip_range:
            try:
                ip_range = ipaddress.ip_network(self.ip_range, strict=True)
                if ip_range.version != subnet.version or not ip_range.subnet_of(subnet):
                    problems.append(f"ip_range {self.ip_range} is not inside subnet {self.subnet}")
            except ValueError as e:
                problems.append(f"invalid ip_range {self.ip_range!r}: {e}")

        if self.gateway:
            try:
                gateway = ipaddress.ip_address(self.gateway)
                if gateway not in subnet:
                    problems.append(f"gateway {self.gateway} is not inside subnet {self.subnet}")
                elif subnet.num_addresses > 2 and gateway in (subnet.network_address, subnet.broadcast_address):
                    problems.append(f"gateway {self.gateway} is the network or broadcast address")
            except ValueError as e:
                problems.append(f"invalid gateway {self.gateway!r}: {e}")
        return problems

    def validate_addresses(self) -> None:
        """
        :raises NetworkAddressError: If the configuration is inconsistent.
        """
        problems = self.check()
        if problems:
            raise NetworkAddressError(problems)


class NetworkDefinition(BaseModel):
    """
    An isolated virtual bridge shared by the services that discover each other by name.
    """
    name: str
    driver: str = "bridge"
    ipam: Optional[IpamConfig] = None
