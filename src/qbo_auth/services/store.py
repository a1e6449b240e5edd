"""Durable storage of the refresh grant in a flat ``KEY=VALUE`` file.

Only the refresh token and realm id lines are ever touched; comments and
unrelated settings in the same file pass through unchanged and in order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from dotenv import dotenv_values, set_key, unset_key
from dotenv.parser import parse_stream

from qbo_auth.models.config import REALM_ID_KEY, REFRESH_TOKEN_KEY
from qbo_auth.models.errors import TokenStoreError
from qbo_auth.services.security import mask_secret

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistedRecord:
    refresh_token: str | None = None
    realm_id: str | None = None


class TokenStore:
    """Reads and writes the persisted grant.

    Failures are raised as ``TokenStoreError``: losing a rotated refresh
    token would strand the process on its next start.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> PersistedRecord:
        """Read the persisted refresh token and realm id, if present."""
        if not self.path.exists():
            return PersistedRecord()

        try:
            values = dotenv_values(self.path)
        except OSError as e:
            raise TokenStoreError(f"Failed to read {self.path}: {e}") from e

        return PersistedRecord(
            refresh_token=values.get(REFRESH_TOKEN_KEY) or None,
            realm_id=values.get(REALM_ID_KEY) or None,
        )

    def save(
        self, refresh_token: str | None = None, realm_id: str | None = None
    ) -> None:
        """Replace or append the recognized keys, leaving other lines intact.

        A key repeated in the file is collapsed into a single line.
        """
        pairs = ((REFRESH_TOKEN_KEY, refresh_token), (REALM_ID_KEY, realm_id))
        updates = [(key, value) for key, value in pairs if value]
        if not updates:
            return

        try:
            self.path.touch(exist_ok=True)
            for key, value in updates:
                if self._occurrences(key) > 1:
                    unset_key(self.path, key)
                success, _, _ = set_key(self.path, key, value, quote_mode="never")
                if not success:
                    raise TokenStoreError(f"Failed to write {key} to {self.path}")
        except OSError as e:
            raise TokenStoreError(f"Failed to write {self.path}: {e}") from e

        logger.debug(
            f"Persisted grant to {self.path} "
            f"(refresh_token={mask_secret(refresh_token)}, realm_id={realm_id})"
        )

    def clear(self) -> None:
        """Remove the recognized keys from the file, if present."""
        if not self.path.exists():
            return

        current = self.load()
        try:
            if current.refresh_token is not None:
                unset_key(self.path, REFRESH_TOKEN_KEY)
            if current.realm_id is not None:
                unset_key(self.path, REALM_ID_KEY)
        except OSError as e:
            raise TokenStoreError(f"Failed to update {self.path}: {e}") from e

        logger.debug(f"Cleared persisted grant from {self.path}")

    def _occurrences(self, key: str) -> int:
        with self.path.open(encoding="utf-8") as stream:
            return sum(1 for binding in parse_stream(stream) if binding.key == key)
