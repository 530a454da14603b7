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
Conversion between Compose duration strings ("1m30s") and seconds.
"""
import re
from typing import Union

from ..exceptions import ParseError

_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001, "us": 0.000001}
_PART = re.compile(r'(\d+(?:\.\d+)?)(h|ms|us|m|s)')


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parses a Compose duration into seconds.

    Bare numbers are taken as seconds.

    :param value: Duration such as "30s", "1m30s", "500ms" or 30.
    :return: Seconds as a float.
    :raises ParseError: If the value is not a valid duration.
    """
    if isinstance(value, (int, float)):
        return float(value)
    text = value.strip()
    if re.fullmatch(r'\d+(?:\.\d+)?', text):
        return float(text)
    pos = 0
    total = 0.0
    for match in _PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ParseError(f"Invalid duration: {value!r}")
    return total


def format_duration(seconds: float) -> str:
    """
    Formats seconds as a Compose duration, e.g. 90 -> "1m30s", 1.5 -> "1s500ms".
    """
    total_ms = int(round(seconds * 1000))
    whole, millis = divmod(total_ms, 1000)
    minutes, secs = divmod(whole, 60)
    hours, minutes = divmod(minutes, 60)
    out = ""
    if hours:
        out += f"{hours}h"
    if minutes:
        out += f"{minutes}m"
    if secs:
        out += f"{secs}s"
    if millis:
        out += f"{millis}ms"
    return out or "0s"
