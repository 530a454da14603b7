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
Logging configuration for the command line tool.
"""
import logging
import sys

LOGGER_FORMAT = "[%(asctime)s] - %(levelname)s: %(message)s"


def configure_logging(verbose: bool = False) -> logging.Logger:
    """
    Installs a single stderr handler on the package logger, replacing the
    one from a previous call. Standard output is left to command results.

    :param verbose: Log at DEBUG instead of INFO.
    :return: The package logger.
    """
    logger = logging.getLogger("shopstack")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for old in list(logger.handlers):
        logger.removeHandler(old)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOGGER_FORMAT))
    logger.addHandler(handler)
    return logger
