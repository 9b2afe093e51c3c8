"""
Settings: feedback and interpreter configuration.
"""

import os
from typing import Any, Literal

from pydantic import BaseModel, field_validator

DEFAULT_PREFERRED_MODEL = "mixtral-8x7b-32768"
LOCAL_FEEDBACK_URL = "http://127.0.0.1:5000/api/feedback"

ENV_PREFIX = "LIVECELLS_"

_BACKEND_ALIASES = {"groq": "remote", "flask": "local"}


class Settings(BaseModel):
    """
    Page-wide configuration.

    Values come from LIVECELLS_* environment variables, then from the
    document's settings block, then from explicit overrides.
    """

    feedback: bool = False
    backend: Literal["remote", "local"] = "remote"
    base_url: str = ""
    api_key: str = ""
    preferred_model: str = DEFAULT_PREFERRED_MODEL
    local_endpoint: str = LOCAL_FEEDBACK_URL
    request_timeout: float = 60.0
    auto_install: bool = False
    packages: list[str] = []
    show_startup_message: bool = True

    @field_validator("backend", mode="before")
    @classmethod
    def _legacy_backend(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            return _BACKEND_ALIASES.get(value, value)
        return value

    @field_validator("base_url", mode="after")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("packages", mode="before")
    @classmethod
    def _split_packages(cls, value):
        if isinstance(value, str):
            return [p.strip() for p in value.split(",") if p.strip()]
        return [p for p in value if p]

    @classmethod
    def from_env(cls, environ=None, **overrides) -> "Settings":
        """Build settings from LIVECELLS_* variables plus overrides."""
        environ = os.environ if environ is None else environ
        data: dict[str, Any] = {}
        for name in cls.model_fields:
            key = ENV_PREFIX + name.upper()
            if key in environ:
                data[name] = environ[key]
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(data)

    def merged(self, **values) -> "Settings":
        """Return a copy with values applied on top, validating them."""
        data = self.model_dump()
        data.update({k: v for k, v in values.items() if v is not None})
        return Settings.model_validate(data)
