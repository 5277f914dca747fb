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


"""HTTP transport for nexrest.

This module exposes resource controllers through FastAPI routers:
- Route tables for resources and relation endpoints
- Error handlers mapping nexrest errors to status codes
- An application factory wiring a whole registry
"""

from .app import create_app
from .config import HTTPConfig
from .errors import install_exception_handlers
from .routes import create_relation_router, create_resource_router, to_resource_request

__all__ = [
    "HTTPConfig",
    "create_app",
    "create_relation_router",
    "create_resource_router",
    "install_exception_handlers",
    "to_resource_request",
]
