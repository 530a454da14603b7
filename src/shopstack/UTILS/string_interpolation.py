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
Utilities for string interpolation using environment variables.
"""
import re
from typing import Dict, List

from ..exceptions import MissingVariableError

# Group 1: escaped '$', group 2: braced name, group 3: ':' when empty counts as unset,
# group 4: '-', '+' or '?', group 5: default, alternate value or message, group 6: bare name
_PATTERN = re.compile(
    r'\$(?:(\$)'
    r'|\{([A-Za-z_][A-Za-z0-9_]*)(?:(:?)([-+?])([^}]*))?\}'
    r'|([A-Za-z_][A-Za-z0-9_]*))'
)


class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in strings.
    Follows Compose: ${VAR} and $VAR, ${VAR:-default} and ${VAR-default},
    ${VAR:+value} and ${VAR+value}, ${VAR:?message} and ${VAR?message},
    and $$ for a literal dollar sign.
    """
    @staticmethod
    def interpolate(template: str, context: Dict[str, str], strict: bool = True) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        :param template: The string containing ${VAR} placeholders.
        :param context: The environment variables context.
        :param strict: Raise on unset ${VAR} instead of substituting an empty string.
        :return: The interpolated string.
        :raises MissingVariableError: If strict and variables are unset, or a
            ${VAR?message} variable is unset whatever the mode.
        """
        missing: List[str] = []
        required: List[str] = []

        def replace(match):
            if match.group(1):
                return '$'
            var_name = match.group(2) or match.group(6)
            colon, modifier, alt_value = match.group(3), match.group(4), match.group(5)

            value = context.get(var_name)
            # with ':' an empty value is treated like an unset one
            is_set = bool(value) if colon else value is not None

            if modifier == '-':
                return value if is_set else alt_value
            if modifier == '+':
                return alt_value if is_set else ''
            if modifier == '?':
                if not is_set:
                    required.append(var_name)
                return value or ''
            if value is None or value == '':
                missing.append(var_name)
                return ''
            return value

        result = _PATTERN.sub(replace, template)
        if required:
            raise MissingVariableError(required + missing)
        if missing and strict:
            raise MissingVariableError(missing)
        return result

    @staticmethod
    def variables(template: str) -> List[str]:
        """
        Lists the variable names referenced without a default or alternate value.
        """
        names = set()
        for m in _PATTERN.finditer(template):
            if m.group(1):
                continue
            if m.group(4) in (None, '?'):
                names.add(m.group(2) or m.group(6))
        return sorted(names)

    @staticmethod
    def escape(value: str) -> str:
        """Doubles every '$' so that the value survives interpolation unchanged."""
        return value.replace('$', '$$')
