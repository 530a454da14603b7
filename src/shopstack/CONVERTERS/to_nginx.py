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
Converter from the static server configuration to an Nginx server block.
"""
from jinja2 import Template

from ..MODELS.proxy_config import ProxyConfig

NGINX_TEMPLATE = """\
server {
    listen {{ proxy.listen }};
    server_name {{ proxy.server_name }};

    root {{ proxy.root }};
    index {{ proxy.index | join(' ') }};

    location / {
        try_files {{ proxy.try_files | join(' ') }};
    }
{% if proxy.gzip %}

    gzip on;
    gzip_types {{ proxy.gzip_types | join(' ') }};
{% endif %}
}
"""


class NginxConverter:
    """
    Renders a ProxyConfig as an Nginx ``default.conf``.
    """

    def __init__(self, proxy: ProxyConfig):
        self.proxy = proxy
        self.template = Template(NGINX_TEMPLATE, trim_blocks=True, keep_trailing_newline=True)

    def render(self) -> str:
        return self.template.render(proxy=self.proxy)

    def write(self, path: str) -> str:
        with open(path, "w") as f:
            f.write(self.render())
        return path
