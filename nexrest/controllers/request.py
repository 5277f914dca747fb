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

"""Transport-independent request object."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..errors import MalformedRequestError

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


@dataclass(frozen=True)
class ResourceRequest:
    """What a controller needs to know about one inbound request.

    Attributes:
        path: URL path of the request, used to build pagination links
        query: Query-string parameters
        body: Decoded JSON body
        user: Authenticated principal, passed through to authorizers and hooks
    """

    path: str = "/"
    query: Mapping[str, Any] = field(default_factory=dict)
    body: Mapping[str, Any] = field(default_factory=dict)
    user: Any = None

    def all(self) -> dict[str, Any]:
        """Query and body parameters merged; body values win."""
        return {**self.query, **self.body}

    def input(self, name: str, default: Any = None) -> Any:
        if name in self.body:
            return self.body[name]
        return self.query.get(name, default)

    def boolean(self, name: str, default: bool = False) -> bool:
        return coerce_bool(self.input(name, default), name)


def coerce_bool(value: Any, name: str) -> bool:
    """Interpret a query-string or JSON flag.

    Raises:
        MalformedRequestError: If the value is not recognizably boolean
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
    raise MalformedRequestError(f"Parameter '{name}' must be a boolean, got {value!r}")


def coerce_int(value: Any, name: str, *, minimum: int = 0) -> int:
    """Interpret a query-string or JSON integer.

    Raises:
        MalformedRequestError: If the value is not an integer or is below ``minimum``
    """
    if isinstance(value, bool):
        raise MalformedRequestError(f"Parameter '{name}' must be an integer, got {value!r}")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        number = int(value.strip())
    else:
        raise MalformedRequestError(f"Parameter '{name}' must be an integer, got {value!r}")
    if number < minimum:
        raise MalformedRequestError(f"Parameter '{name}' must be >= {minimum}, got {number}")
    return number
