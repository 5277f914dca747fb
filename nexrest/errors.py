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

"""Error taxonomy for the REST controller layer.

Request errors are raised while parsing, before any transaction is opened.
Everything raised inside a batch loop is propagated unchanged after the
transaction has been rolled back.
"""

from __future__ import annotations


class RestError(Exception):
    """Base class for all errors raised by nexrest."""


class ConfigError(RestError):
    """Exception raised for configuration errors."""

    pass


class RequestError(RestError):
    """The inbound request cannot be compiled into a query."""


class MalformedRequestError(RequestError):
    """Request parameters or payloads have the wrong shape."""


class MalformedFilterError(RequestError):
    """A filter entry has the wrong shape or an invalid value."""


class UnsupportedOperatorError(MalformedFilterError):
    """A filter entry uses an operator outside the supported set."""

    def __init__(self, operator: object) -> None:
        super().__init__(f"Unsupported filter operator: {operator!r}")
        self.operator = operator


class NestingLimitExceededError(RequestError):
    """Filter groups or relation paths are nested deeper than allowed."""

    def __init__(self, depth: int, max_depth: int, what: str = "filters") -> None:
        super().__init__(f"Max nested depth of {what} exceeded: {depth} > {max_depth}")
        self.depth = depth
        self.max_depth = max_depth


class FieldNotAllowedError(RequestError):
    """A field is not on the resource allow-list for the requested usage."""

    def __init__(self, field: str, resource: str, usage: str) -> None:
        super().__init__(f"Field '{field}' is not {usage} on resource '{resource}'")
        self.field = field
        self.resource = resource
        self.usage = usage


class RelationNotAllowedError(RequestError):
    """A requested relation path is unknown or not allow-listed."""

    def __init__(self, path: str, resource: str) -> None:
        super().__init__(f"Relation '{path}' is not allowed on resource '{resource}'")
        self.path = path
        self.resource = resource


class PayloadValidationError(RequestError):
    """A store/update payload failed the bound request validator."""

    def __init__(self, message: str, errors: list[dict[str, object]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class UnsupportedOperationError(RequestError):
    """The operation is not available for the resource (e.g. restore without soft deletes)."""


class AuthorizationError(RestError):
    """The authorizer denied an ability on a subject."""

    def __init__(self, ability: str, subject: object = None, message: str | None = None) -> None:
        super().__init__(message or f"This action is unauthorized: {ability}")
        self.ability = ability
        self.subject = subject


class ResourceNotFoundError(RestError):
    """An entity could not be found, or vanished when re-fetched after a mutation."""

    def __init__(self, resource: str, key: object) -> None:
        super().__init__(f"Resource '{resource}' with key {key!r} not found")
        self.resource = resource
        self.key = key


class TransactionError(RestError):
    """The store failed to begin, commit or roll back a transaction."""
