"""HTTP transport configuration for nexrest.

This module provides configuration for the FastAPI application factory.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class HTTPConfig:
    """Configuration for the HTTP application.

    Attributes:
        title: OpenAPI title of the application (default: "nexrest")
        api_prefix: Path prefix mounted before every resource route (default: "")
        cors_origins: List of allowed CORS origins (default: ["*"])
        cors_credentials: Allow credentials (default: True)
        cors_methods: Allowed HTTP methods (default: ["*"])
        cors_headers: Allowed headers (default: ["*"])
    """

    title: str = "nexrest"
    api_prefix: str = ""
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    cors_credentials: bool = True
    cors_methods: list[str] = field(default_factory=lambda: ["*"])
    cors_headers: list[str] = field(default_factory=lambda: ["*"])
