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

"""Resource bindings: controller identity resolved once, at registration."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from ..errors import ConfigError
from ..orm.descriptor import DescriptorRegistry, ModelDescriptor
from .authorization import AllowAllAuthorizer, Authorizer
from .hooks import BatchVerb, ResourceHooks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceBinding:
    """Everything a controller needs to serve one resource.

    Attributes:
        descriptor: What the resource exposes
        payload_model: Validator for store payloads
        update_payload_model: Validator for (partial) update payloads
        hooks: One hook set per batch verb
        authorizer: Ability checks for the resource
    """

    descriptor: ModelDescriptor
    payload_model: type[BaseModel] | None = None
    update_payload_model: type[BaseModel] | None = None
    hooks: Mapping[BatchVerb, ResourceHooks] = field(default_factory=dict)
    authorizer: Authorizer = field(default_factory=AllowAllAuthorizer)

    @property
    def name(self) -> str:
        return self.descriptor.name

    def hooks_for(self, verb: BatchVerb) -> ResourceHooks:
        return self.hooks.get(verb) or ResourceHooks()


class ResourceRegistry(DescriptorRegistry):
    """Descriptor registry that also holds the binding of every resource.

    Example:
        >>> registry = ResourceRegistry()
        >>> registry.bind(authors)
        >>> registry.bind(posts, hooks={BatchVerb.STORE: AuditHooks()})
        >>> registry.finalize()
    """

    def __init__(self) -> None:
        super().__init__()
        self._bindings: dict[str, ResourceBinding] = {}
        self._finalized = False

    def bind(self, descriptor: ModelDescriptor, **options: Any) -> ResourceBinding:
        """Register a descriptor together with its controller configuration."""
        if self._finalized:
            raise ConfigError(f"Cannot bind '{descriptor.name}': registry is already finalized")
        self.register(descriptor)
        binding = ResourceBinding(descriptor=descriptor, **options)
        self._bindings[descriptor.name] = binding
        return binding

    def binding(self, name: str) -> ResourceBinding:
        try:
            return self._bindings[name]
        except KeyError:
            raise ConfigError(f"No binding for resource: '{name}'") from None

    def finalize(self) -> None:
        """Validate every registration. Bindings cannot be added afterwards.

        Raises:
            ConfigError: If a descriptor is inconsistent
        """
        self.validate()
        self._finalized = True
        logger.info("Resource registry finalized with %d resources", len(self))

    @property
    def finalized(self) -> bool:
        return self._finalized
