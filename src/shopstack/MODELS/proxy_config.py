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
Models for the static asset server configuration.
"""
import posixpath
from typing import Callable, List
from pydantic import BaseModel

DEFAULT_GZIP_TYPES = [
    "text/plain",
    "text/css",
    "application/json",
    "application/javascript",
    "text/xml",
    "application/xml",
    "application/xml+rss",
    "text/javascript",
]


class ProxyConfig(BaseModel):
    """
    Single-page application server block: static root, index document,
    history-API fallback and response compression.
    """
    listen: int = 80
    server_name: str = "localhost"
    root: str = "/usr/share/nginx/html"
    index: List[str] = ["index.html", "index.htm"]
    fallback: str = "/index.html"
    gzip: bool = True
    gzip_types: List[str] = list(DEFAULT_GZIP_TYPES)

    @property
    def try_files(self) -> List[str]:
        return ["$uri", "$uri/", self.fallback]

    def compresses(self, content_type: str) -> bool:
        """
        True when responses of ``content_type`` are gzip compressed.
        text/html is always compressed once gzip is on.
        """
        if not self.gzip:
            return False
        mime = content_type.split(";")[0].strip().lower()
        return mime == "text/html" or mime in self.gzip_types

    def resolve(self, path: str, exists: Callable[[str], bool], is_dir: Callable[[str], bool]) -> str:
        """
        Resolves a request path to the document served, following
        ``try_files $uri $uri/ <fallback>``.

        :param path: Request path, e.g. ``/products/42``.
        :param exists: Whether a path relative to the root exists.
        :param is_dir: Whether a path relative to the root is a directory.
        :return: The root-relative document path that is served.
        """
        uri = posixpath.normpath("/" + path.split("?", 1)[0].lstrip("/"))
        if uri != "/" and exists(uri) and not is_dir(uri):
            return uri
        if is_dir(uri):
            for name in self.index:
                candidate = posixpath.join(uri, name)
                if exists(candidate) and not is_dir(candidate):
                    return candidate
        return self.fallback
