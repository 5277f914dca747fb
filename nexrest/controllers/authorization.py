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

"""Authorization checks consumed by controllers and the batch engine."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any, Protocol

from ..errors import AuthorizationError

logger = logging.getLogger(__name__)


class Ability(str, Enum):
    VIEW_ANY = "view_any"
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    FORCE_DELETE = "force_delete"
    RESTORE = "restore"


class Authorizer(Protocol):
    def authorize(self, ability: Ability, subject: Any, *, user: Any = None) -> None:
        """Return normally if ``user`` may perform ``ability`` on ``subject``.

        Raises:
            AuthorizationError: If the ability is denied
        """
        ...


class AllowAllAuthorizer:
    """Grants every ability."""

    def authorize(self, ability: Ability, subject: Any, *, user: Any = None) -> None:
        return None


Policy = Callable[[Any, Any], bool]


class PolicyAuthorizer:
    """Looks up a predicate per ability.

    Each policy is called as ``policy(user, subject)``. For ``view_any`` and
    ``create`` the subject is the resource name and the pending entity.
    Abilities without a policy fall back to ``default``.

    Example:
        >>> authorizer = PolicyAuthorizer({Ability.DELETE: lambda user, post: post.get("author_id") == user.id})
    """

    def __init__(self, policies: Mapping[Ability | str, Policy], *, default: bool = False) -> None:
        self.policies: dict[Ability, Policy] = {Ability(ability): policy for ability, policy in policies.items()}
        self.default = default

    def authorize(self, ability: Ability, subject: Any, *, user: Any = None) -> None:
        policy = self.policies.get(Ability(ability))
        allowed = self.default if policy is None else bool(policy(user, subject))
        if not allowed:
            logger.debug("Denied '%s' on %r", Ability(ability).value, subject)
            raise AuthorizationError(Ability(ability).value, subject)
