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


"""Convention-driven REST controllers."""

from .authorization import Ability, AllowAllAuthorizer, Authorizer, PolicyAuthorizer
from .batch import BatchOperationEngine, BatchOutcome
from .compiler import QueryCompiler
from .controller import RelationController, ResourceController
from .hooks import (
    BatchContext,
    BatchHookInput,
    BatchVerb,
    EntityHookInput,
    FunctionHooks,
    HookChain,
    HookResult,
    ResourceHooks,
)
from .parser import FilterParser, ParsedQuery
from .registry import ResourceBinding, ResourceRegistry
from .relations import RelationsResolver
from .request import ResourceRequest
from .responder import Envelope, ResourceCollectionResponder

__all__ = [
    # Controllers
    "ResourceController",
    "RelationController",
    "ResourceRequest",
    # Registration
    "ResourceBinding",
    "ResourceRegistry",
    # Pipeline
    "FilterParser",
    "ParsedQuery",
    "RelationsResolver",
    "QueryCompiler",
    "ResourceCollectionResponder",
    "Envelope",
    # Batches and hooks
    "BatchOperationEngine",
    "BatchOutcome",
    "BatchVerb",
    "BatchContext",
    "BatchHookInput",
    "EntityHookInput",
    "HookResult",
    "ResourceHooks",
    "FunctionHooks",
    "HookChain",
    # Authorization
    "Ability",
    "Authorizer",
    "AllowAllAuthorizer",
    "PolicyAuthorizer",
]
