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


"""
Test utilities and helper functions.

This module contains utility functions and helpers for testing.
"""

import tempfile
from pathlib import Path
from typing import Any

import yaml


def create_temp_yaml_config(config: dict[str, Any]) -> Path:
    """Create a temporary YAML configuration file."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(config, f)
        return Path(f.name)


def keys(entities: list[Any]) -> list[Any]:
    """Keys of a list of entities, in order."""
    return [entity.key for entity in entities]
