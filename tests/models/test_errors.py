"""Tests for the error hierarchy and caller-facing formatting."""

from qbo_auth.models.errors import (
    AuthorizationDeniedError,
    AuthorizationError,
    InvalidGrantError,
    NotAuthenticatedError,
    OAuth2Error,
    TokenError,
    TokenRefreshError,
    TransientRefreshError,
    format_error,
)


class TestFormatError:
    def test_includes_intuit_tid(self):
        error = InvalidGrantError("Token revoked", intuit_tid="1-abc")

        assert format_error(error) == "Error: Token revoked (intuit_tid: 1-abc)"

    def test_without_intuit_tid(self):
        assert format_error(ValueError("bad value")) == "Error: bad value"

    def test_plain_string(self):
        assert format_error("something broke") == "Error: something broke"

    def test_unknown_value(self):
        assert format_error(42) == "Unknown error occurred"


class TestHierarchy:
    def test_families(self):
        assert issubclass(AuthorizationDeniedError, AuthorizationError)
        assert issubclass(InvalidGrantError, TokenError)
        assert issubclass(TokenError, OAuth2Error)
        assert issubclass(NotAuthenticatedError, OAuth2Error)

    def test_refresh_error_keeps_last_attempt(self):
        last = TransientRefreshError("503", intuit_tid="1-abc")

        error = TokenRefreshError(3, last)

        assert error.last_error is last
        assert error.intuit_tid == "1-abc"
        assert "3 attempts" in str(error)

    def test_denied_error_message(self):
        error = AuthorizationDeniedError("access_denied", "User denied")

        assert str(error) == "Authorization denied: access_denied (User denied)"
