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


"""Mapping of nexrest errors to HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from ...errors import (
    AuthorizationError,
    ConfigError,
    PayloadValidationError,
    RequestError,
    ResourceNotFoundError,
    TransactionError,
)

logger = logging.getLogger(__name__)


def install_exception_handlers(app: FastAPI) -> None:
    """Register JSON error responses for every nexrest error family.

    Status codes:
        RequestError: 422
        AuthorizationError: 403
        ResourceNotFoundError: 404
        IntegrityError: 409
        TransactionError, ConfigError: 500
    """

    @app.exception_handler(RequestError)
    async def request_error(request: Request, exc: RequestError) -> JSONResponse:
        content: dict[str, object] = {"message": str(exc)}
        if isinstance(exc, PayloadValidationError):
            content["errors"] = exc.errors
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(AuthorizationError)
    async def authorization_error(request: Request, exc: AuthorizationError) -> JSONResponse:
        return JSONResponse(status_code=403, content={"message": str(exc)})

    @app.exception_handler(ResourceNotFoundError)
    async def not_found(request: Request, exc: ResourceNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"message": str(exc)})

    @app.exception_handler(IntegrityError)
    async def integrity_error(request: Request, exc: IntegrityError) -> JSONResponse:
        logger.info("Integrity violation on %s %s: %s", request.method, request.url.path, exc.orig)
        return JSONResponse(status_code=409, content={"message": "The request conflicts with existing data"})

    @app.exception_handler(TransactionError)
    async def transaction_error(request: Request, exc: TransactionError) -> JSONResponse:
        logger.error("Transaction failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"message": "Transaction failed"})

    @app.exception_handler(ConfigError)
    async def config_error(request: Request, exc: ConfigError) -> JSONResponse:
        logger.error("Configuration error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"message": "Server misconfigured"})
