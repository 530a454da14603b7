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
Parser for the Nginx server block that serves the frontend bundle.
"""
import re
from typing import List, Tuple
from ..MODELS.proxy_config import ProxyConfig
from ..exceptions import ParseError

_TOKEN = re.compile(r'"[^"]*"|\'[^\']*\'|[{};]|[^\s{};]+')
_KNOWN = ("listen", "server_name", "root", "index", "try_files", "gzip", "gzip_types")


class NginxParser:
    """
    Parses the directives used by the static server configuration
    (listen, server_name, root, index, try_files, gzip, gzip_types).
    Other directives are ignored.
    """
    def parse(self, conf_path: str) -> ProxyConfig:
        with open(conf_path, 'r') as f:
            return self.parse_from_string(f.read())

    def parse_from_string(self, content: str) -> ProxyConfig:
        """
        :raises ParseError: If there is no server block or braces do not balance.
        """
        directives = self._directives(content)
        server = [(ctx, name, args) for ctx, name, args in directives if "server" in ctx]
        if not server:
            raise ParseError("No server block found in Nginx configuration")

        values = {}
        for ctx, name, args in server:
            # the root location and the server level both count
            if ctx[-1].startswith("location") and ctx[-1] != "location /":
                continue
            if name in _KNOWN and not args:
                raise ParseError(f"Directive {name} has no arguments")
            if name == "listen":
                port = args[0].rsplit(":", 1)[-1]
                if not port.isdigit():
                    raise ParseError(f"Unsupported listen value: {args[0]}")
                values["listen"] = int(port)
            elif name == "server_name":
                values["server_name"] = args[0]
            elif name == "root":
                values["root"] = args[0]
            elif name == "index":
                values["index"] = args
            elif name == "try_files":
                values["fallback"] = args[-1]
            elif name == "gzip":
                values["gzip"] = args[0] == "on"
            elif name == "gzip_types":
                values["gzip_types"] = args
        return ProxyConfig(**values)

    def _directives(self, content: str) -> List[Tuple[Tuple[str, ...], str, List[str]]]:
        content = re.sub(r'#.*$', '', content, flags=re.MULTILINE)
        tokens = [t.strip('"\'') for t in _TOKEN.findall(content)]

        stack: List[str] = []
        result = []
        current: List[str] = []
        for token in tokens:
            if token == "{":
                if not current:
                    raise ParseError("Block without a name")
                stack.append(" ".join(current))
                current = []
            elif token == "}":
                if not stack or current:
                    raise ParseError("Unbalanced braces in Nginx configuration")
                stack.pop()
            elif token == ";":
                if current:
                    result.append((tuple(stack), current[0], current[1:]))
                current = []
            else:
                current.append(token)
        if stack or current:
            raise ParseError("Unterminated block or directive in Nginx configuration")
        return result
