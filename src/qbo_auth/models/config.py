"""Client credentials and runtime settings.

Settings come from a flat ``KEY=VALUE`` env file (the same file the token
store writes back to), overlaid by process environment variables and then by
keyword overrides.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from qbo_auth.models.errors import ConfigurationError

CLIENT_ID_KEY = "QUICKBOOKS_CLIENT_ID"
CLIENT_SECRET_KEY = "QUICKBOOKS_CLIENT_SECRET"
REFRESH_TOKEN_KEY = "QUICKBOOKS_REFRESH_TOKEN"
REALM_ID_KEY = "QUICKBOOKS_REALM_ID"
ENVIRONMENT_KEY = "QUICKBOOKS_ENVIRONMENT"
REDIRECT_URI_KEY = "QUICKBOOKS_REDIRECT_URI"
CALLBACK_TIMEOUT_KEY = "QUICKBOOKS_CALLBACK_TIMEOUT"

DEFAULT_REDIRECT_URI = "http://localhost:8000/callback"
DEFAULT_SCOPE = "com.intuit.quickbooks.accounting"


class Environment(str, Enum):
    SANDBOX = "sandbox"
    PRODUCTION = "production"

    @classmethod
    def _missing_(cls, value: object) -> Environment | None:
        if isinstance(value, str):
            for member in cls:
                if member.value == value.strip().lower():
                    return member
        return None


class ClientCredentials(BaseModel):
    """OAuth client registration for a single QuickBooks app.

    Immutable for the lifetime of the process.
    """

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str
    redirect_uri: str = DEFAULT_REDIRECT_URI
    environment: Environment = Environment.SANDBOX

    @field_validator("client_id", "client_secret", "redirect_uri")
    @classmethod
    def validate_required(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    def __init__(self, **data: Any) -> None:
        """Validate credentials, raising ConfigurationError on bad input."""
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise ConfigurationError(
                "Client ID, Client Secret and Redirect URI must be set "
                f"({CLIENT_ID_KEY}, {CLIENT_SECRET_KEY}): {e}"
            ) from e

    @property
    def is_sandbox(self) -> bool:
        return self.environment is Environment.SANDBOX


class Settings(BaseModel):
    """Runtime configuration for the token lifecycle manager."""

    credentials: ClientCredentials
    refresh_token: str | None = None
    realm_id: str | None = None
    env_file: Path = Path(".env")

    callback_host: str = "127.0.0.1"
    callback_port: int = Field(default=8000, ge=1, le=65535)
    callback_path: str = "/callback"
    authorization_timeout: float | None = Field(default=300.0, gt=0)
    scope: str = DEFAULT_SCOPE
    http_timeout: float = Field(default=30.0, gt=0)

    @classmethod
    def load(cls, env_file: str | Path = ".env", **overrides: Any) -> Settings:
        """Load settings from the env file, process environment and overrides.

        Priority: overrides > env vars > env file > defaults.
        """
        path = Path(env_file)
        values: dict[str, str | None] = {}

        # 1. Env file (a missing file just means nothing was stored yet)
        if path.is_file():
            try:
                values.update(dotenv_values(path))
            except OSError as e:
                raise ConfigurationError(f"Cannot read {path}: {e}") from e

        # 2. Process environment
        for key in (
            CLIENT_ID_KEY,
            CLIENT_SECRET_KEY,
            REFRESH_TOKEN_KEY,
            REALM_ID_KEY,
            ENVIRONMENT_KEY,
            REDIRECT_URI_KEY,
            CALLBACK_TIMEOUT_KEY,
        ):
            if os.environ.get(key):
                values[key] = os.environ[key]

        environment = values.get(ENVIRONMENT_KEY) or Environment.SANDBOX.value
        try:
            environment = Environment(environment)
        except ValueError as e:
            raise ConfigurationError(
                f"{ENVIRONMENT_KEY} must be 'sandbox' or 'production', "
                f"got {environment!r}"
            ) from e

        credentials = ClientCredentials(
            client_id=values.get(CLIENT_ID_KEY) or "",
            client_secret=values.get(CLIENT_SECRET_KEY) or "",
            redirect_uri=values.get(REDIRECT_URI_KEY) or DEFAULT_REDIRECT_URI,
            environment=environment,
        )

        data: dict[str, Any] = {
            "credentials": credentials,
            "refresh_token": values.get(REFRESH_TOKEN_KEY) or None,
            "realm_id": values.get(REALM_ID_KEY) or None,
            "env_file": path,
        }
        if values.get(CALLBACK_TIMEOUT_KEY):
            data["authorization_timeout"] = values[CALLBACK_TIMEOUT_KEY]

        # 3. Keyword overrides
        data.update(overrides)

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings: {e}") from e
