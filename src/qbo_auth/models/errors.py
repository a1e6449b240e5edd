"""Exception hierarchy for QuickBooks OAuth 2.0 authentication errors.

Provider error payloads are decoded into these types once, at the token
endpoint boundary, so nothing above that layer inspects raw response shapes.
"""

from __future__ import annotations


class OAuth2Error(Exception):
    """Base exception for all OAuth 2.0 related errors."""

    def __init__(self, message: str, *, intuit_tid: str | None = None) -> None:
        super().__init__(message)
        self.intuit_tid = intuit_tid


class ConfigurationError(OAuth2Error):
    """Raised when required client credentials are missing at startup."""

    pass


class TokenStoreError(OAuth2Error):
    """Raised when the persisted token file cannot be read or written."""

    pass


class DiscoveryError(OAuth2Error):
    """Raised when the provider discovery document cannot be fetched."""

    pass


class AuthorizationError(OAuth2Error):
    """Raised when the interactive authorization flow fails."""

    pass


class CsrfMismatchError(AuthorizationError):
    """Raised when the callback state does not match the issued state.

    This indicates either a missing state parameter or a state mismatch,
    which could indicate a CSRF attack or a stale browser tab.
    """

    pass


class AuthorizationDeniedError(AuthorizationError):
    """Raised when the provider redirects back with an error (user denied)."""

    def __init__(
        self, error: str, description: str | None = None, **kwargs: str | None
    ) -> None:
        detail = f"{error} ({description})" if description else error
        super().__init__(f"Authorization denied: {detail}", **kwargs)
        self.error = error
        self.description = description


class AuthorizationTimeoutError(AuthorizationError):
    """Raised when no callback arrives within the configured timeout."""

    pass


class CallbackListenerError(AuthorizationError):
    """Raised when the local callback listener fails to bind or crashes."""

    pass


class TokenError(OAuth2Error):
    """Raised when token endpoint operations fail."""

    pass


class AuthorizationExchangeError(TokenError):
    """Raised when authorization code to token exchange fails."""

    pass


class InvalidGrantError(TokenError):
    """Raised when the refresh token is expired or revoked.

    Never retried: the grant has to be replaced through a new authorization.
    """

    pass


class TransientRefreshError(TokenError):
    """Raised for a single failed refresh attempt that may succeed on retry."""

    pass


class TokenRefreshError(TokenError):
    """Raised when every refresh attempt in the retry budget failed."""

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        super().__init__(
            f"Failed to refresh QuickBooks token after {attempts} attempts: "
            f"{last_error}",
            intuit_tid=getattr(last_error, "intuit_tid", None),
        )
        self.attempts = attempts
        self.last_error = last_error


class ReauthorizationError(TokenError):
    """Raised when the refresh grant was invalid and re-authorization failed."""

    def __init__(
        self, invalid_grant: InvalidGrantError, reauthorization_error: BaseException
    ) -> None:
        super().__init__(
            "Refresh token was rejected and re-authorization failed: "
            f"{reauthorization_error}"
        )
        self.invalid_grant = invalid_grant
        self.reauthorization_error = reauthorization_error


class RevocationError(TokenError):
    """Raised when remote revocation of a token fails."""

    pass


class NotAuthenticatedError(OAuth2Error):
    """Raised when a handle is requested before authentication completed."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message or "QuickBooks not authenticated. Call authenticate() first"
        )


def format_error(error: object) -> str:
    """Render an error as a single caller-facing line.

    Includes the provider's ``intuit_tid`` when the error carries one so the
    message can be quoted to Intuit support. Only the exception message is
    used; token values are never part of these messages.
    """
    tid = getattr(error, "intuit_tid", None)
    suffix = f" (intuit_tid: {tid})" if tid else ""

    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
        return f"Error: {message}{suffix}"
    if isinstance(error, str):
        return f"Error: {error}{suffix}"
    return f"Unknown error occurred{suffix}"
