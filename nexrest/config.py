# Copyright (c) Nex-AGI. All rights reserved.
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

"""Configuration models for the nexrest controller layer."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError

YamlValue = dict[str, Any] | list[Any] | str | int | float | bool | None


class PaginationConfig(BaseModel):
    """Pagination defaults applied when a request does not set them."""

    model_config = ConfigDict(extra="forbid")

    default_limit: int = Field(default=15, ge=1)
    disabled: bool = False
    max_limit: int | None = Field(default=None, ge=1)


class SearchConfig(BaseModel):
    """Full-text-ish search behaviour."""

    model_config = ConfigDict(extra="forbid")

    case_sensitive: bool = True


class RestConfig(BaseModel):
    """Configuration surface consumed at startup.

    Attributes:
        max_nested_depth: Maximum nesting of filter groups and relation paths
        pagination: Default page size and global pagination switch
        search: Search matching options
    """

    model_config = ConfigDict(extra="forbid")

    max_nested_depth: int = Field(default=1, ge=0)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RestConfig:
        """Validate a configuration mapping.

        Raises:
            ConfigError: If the mapping does not describe a valid configuration
        """
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            raise ConfigError(f"Invalid nexrest configuration: {e}") from e

    @classmethod
    def from_yaml(cls, config_path: str | os.PathLike[str]) -> RestConfig:
        """Load configuration from a YAML file.

        The file may reference environment variables as ``${env.NAME}`` and its
        own directory as ``${this_file_dir}``. A top-level ``nexrest`` key is
        unwrapped so the settings can live inside a larger application config.
        """
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")

        try:
            loaded = load_yaml_with_vars(path)
        except yaml.YAMLError as e:
            raise ConfigError(f"YAML parsing error in {config_path}: {e}") from e

        if loaded is None:
            return cls()
        if not isinstance(loaded, dict):
            raise ConfigError(f"Configuration in {config_path} must be a mapping")
        section = loaded.get("nexrest", loaded)
        if not isinstance(section, dict):
            raise ConfigError("'nexrest' section must be a mapping")
        return cls.from_dict(section)


def load_yaml_with_vars(path: str | os.PathLike[str]) -> YamlValue:
    with open(path, encoding="utf-8") as f:
        config_text = f.read()

    base_dir = os.path.dirname(os.path.abspath(path))
    config_text = config_text.replace("${this_file_dir}", base_dir)

    # Replace ${env.VAR_NAME} placeholders with environment variables
    env_pattern = re.compile(r"\$\{env\.([A-Za-z_][A-Za-z0-9_]*)\}")

    def _replace_env(match: re.Match[str]) -> str:
        env_name = match.group(1)
        if env_name not in os.environ:
            raise ConfigError(f"Environment variable '{env_name}' is not set")
        return os.environ[env_name]

    config_text = env_pattern.sub(_replace_env, config_text)

    loaded: YamlValue = yaml.safe_load(config_text)
    return loaded
