"""Discovery-related models for Intuit's OpenID configuration.

Intuit publishes one discovery document per environment; only the endpoint
URLs are used.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from qbo_auth.models.config import Environment

DISCOVERY_URLS: dict[Environment, str] = {
    Environment.PRODUCTION: (
        "https://developer.intuit.com/.well-known/openid_configuration"
    ),
    Environment.SANDBOX: (
        "https://developer.intuit.com/.well-known/openid_sandbox_configuration"
    ),
}

AUTHORIZATION_ENDPOINT = "https://appcenter.intuit.com/connect/oauth2"
TOKEN_ENDPOINT = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
REVOCATION_ENDPOINT = "https://developer.api.intuit.com/v2/oauth2/tokens/revoke"
USERINFO_ENDPOINTS: dict[Environment, str] = {
    Environment.PRODUCTION: (
        "https://accounts.platform.intuit.com/v1/openid_connect/userinfo"
    ),
    Environment.SANDBOX: (
        "https://sandbox-accounts.platform.intuit.com/v1/openid_connect/userinfo"
    ),
}


class DiscoveryDocument(BaseModel):
    """OAuth endpoint URLs published by the provider.

    Immutable once resolved; unknown fields in the published document are
    ignored.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    authorization_endpoint: str
    token_endpoint: str
    revocation_endpoint: str
    userinfo_endpoint: str | None = None
    issuer: str | None = None


def default_discovery(environment: Environment) -> DiscoveryDocument:
    """Built-in endpoints used when the discovery document is unavailable."""
    return DiscoveryDocument(
        authorization_endpoint=AUTHORIZATION_ENDPOINT,
        token_endpoint=TOKEN_ENDPOINT,
        revocation_endpoint=REVOCATION_ENDPOINT,
        userinfo_endpoint=USERINFO_ENDPOINTS[environment],
    )
