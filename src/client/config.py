"""
Configuration for the portal client.

Values come from keyword arguments or from ``PORTAL_*`` environment variables
(a ``.env`` file is honoured through python-dotenv).
"""
import os
import logging
from typing import Literal, Optional

import httpx
from dotenv import load_dotenv
from pydantic import BaseModel, field_validator, model_validator

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000/api"


def _strip_api_segment(base_url: str) -> str:
    url = httpx.URL(base_url)
    path = url.path.rstrip("/")
    if path.endswith("/api"):
        path = path[: -len("/api")]
    return str(url.copy_with(path=path or "/")).rstrip("/")


class ClientConfig(BaseModel):
    base_url: str = DEFAULT_BASE_URL
    credential_fallback_url: Optional[str] = None

    csrf_cookie_name: str = "csrftoken"
    csrf_header_name: str = "X-CSRFToken"

    credential_path: str = "/login/"
    login_path: str = "/login/"
    logout_path: str = "/logout/"
    probe_path: str = "/employees/"
    login_entry_point: str = "/login"

    timeout: float = 10.0

    marker_storage: Literal["memory", "disk", "redis"] = "memory"
    marker_path: Optional[str] = None
    redis_url: Optional[str] = None

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got '{value}'")
        return value

    @field_validator("timeout")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeout must be greater than zero")
        return value

    @model_validator(mode="after")
    def _derive_fallback_url(self) -> "ClientConfig":
        # The fallback endpoint lives on the non-API part of the same origin
        if not self.credential_fallback_url:
            self.credential_fallback_url = _strip_api_segment(self.base_url)
        if self.marker_storage == "disk" and not self.marker_path:
            raise ValueError("marker_path must be set when marker_storage is 'disk'")
        return self

    @classmethod
    def from_env(cls, **overrides) -> "ClientConfig":
        """
        Build a config from ``PORTAL_*`` environment variables.

        Keyword arguments take precedence over the environment.
        """
        load_dotenv()

        env_map = {
            "base_url": "PORTAL_API_BASE_URL",
            "credential_fallback_url": "PORTAL_CREDENTIAL_FALLBACK_URL",
            "csrf_cookie_name": "PORTAL_CSRF_COOKIE_NAME",
            "csrf_header_name": "PORTAL_CSRF_HEADER_NAME",
            "credential_path": "PORTAL_CREDENTIAL_PATH",
            "login_path": "PORTAL_LOGIN_PATH",
            "logout_path": "PORTAL_LOGOUT_PATH",
            "probe_path": "PORTAL_PROBE_PATH",
            "login_entry_point": "PORTAL_LOGIN_ENTRY_POINT",
            "timeout": "PORTAL_REQUEST_TIMEOUT",
            "marker_storage": "PORTAL_MARKER_STORAGE",
            "marker_path": "PORTAL_MARKER_PATH",
            "redis_url": "REDIS_URL",
        }

        values = {}
        for field, env_var in env_map.items():
            value = os.getenv(env_var)
            if value:
                values[field] = value

        values.update({key: value for key, value in overrides.items() if value is not None})

        if "base_url" not in values:
            logger.warning(f"PORTAL_API_BASE_URL not set, using default {DEFAULT_BASE_URL}")

        return cls(**values)
