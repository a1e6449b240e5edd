"""Tests for CSRF state handling and secret masking."""

import pytest

from qbo_auth.models.errors import CsrfMismatchError
from qbo_auth.services.security import generate_state, mask_secret, validate_state


class TestState:
    def test_generated_states_are_unique(self):
        states = {generate_state() for _ in range(50)}

        assert len(states) == 50
        assert all(len(state) == 32 for state in states)

    def test_matching_state_passes(self):
        state = generate_state()

        validate_state(state, state)

    @pytest.mark.parametrize("actual", [None, "", "forged-state"])
    def test_missing_or_mismatched_state_raises(self, actual):
        with pytest.raises(CsrfMismatchError):
            validate_state("expected-state", actual)


class TestMaskSecret:
    def test_masks_all_but_prefix(self):
        assert mask_secret("AB11-refresh-token") == "AB11****"

    def test_short_and_missing_values(self):
        assert mask_secret("abc") == "***"
        assert mask_secret(None) == "<none>"
